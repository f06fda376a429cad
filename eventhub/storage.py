"""Database initialization and account helpers."""

from __future__ import annotations

import logging
import secrets
import shutil
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect, select

from .config import settings
from .database import engine, get_session
from .errors import NotFoundError, ValidationError
from .models import Role, User

logger = logging.getLogger("uvicorn.error")


def init_db() -> None:
    for action in upgrade_database(make_backup=False):
        logger.info(action)


def _alembic_config() -> Config:
    package_dir = Path(__file__).resolve().parent
    script_location = package_dir / "alembic"
    ini_path = script_location.parent / "alembic.ini"

    config = Config(str(ini_path)) if ini_path.exists() else Config()
    config.set_main_option("script_location", str(script_location))
    config.set_main_option("sqlalchemy.url", str(engine.url).replace("%", "%%"))
    return config


def upgrade_database(*, make_backup: bool = True) -> list[str]:
    """Upgrade the database schema in-place.

    Returns a list of applied actions.
    """
    actions: list[str] = []
    db_path = Path(settings.database_path)

    if make_backup and db_path.exists():
        backup_path = db_path.with_suffix(db_path.suffix + ".bak")
        shutil.copy(db_path, backup_path)
        actions.append(f"Backup created at {backup_path}")

    inspector = inspect(engine)
    has_alembic = inspector.has_table("alembic_version")
    has_events = inspector.has_table("events")
    config = _alembic_config()

    if not has_alembic and not has_events:
        command.upgrade(config, "head")
        actions.append("Ran Alembic upgrade to head (fresh database)")
    elif not has_alembic:
        # Tables created outside Alembic; baseline them.
        command.stamp(config, "head")
        actions.append("Stamped existing database to Alembic head")
    else:
        command.upgrade(config, "head")
        actions.append("Applied Alembic migrations to head")

    return actions


def _parse_role(role: str | Role) -> Role:
    try:
        return Role(role)
    except ValueError as exc:
        allowed = ", ".join(r.value for r in Role)
        raise ValidationError(f"Unknown role {role!r}. Use one of: {allowed}") from exc


def create_user(
    name: str,
    email: str,
    *,
    role: str | Role = Role.USER,
    role_label: str = "",
    community_name: str = "",
) -> User:
    """Create an account and return it with a freshly minted bearer token."""
    parsed = _parse_role(role)
    email = email.strip().lower()
    if not name.strip() or "@" not in email:
        raise ValidationError("A name and a valid email are required")
    with get_session() as session:
        if session.scalar(select(User.id).where(User.email == email)):
            raise ValidationError(f"User with email {email} already exists")
        user = User(
            name=name.strip(),
            email=email,
            role=parsed.value,
            role_label=role_label.strip(),
            community_name=community_name.strip(),
            api_token=secrets.token_urlsafe(32),
        )
        session.add(user)
        session.flush()
        logger.info("Created %s account %s", user.role, user.email)
        return user


def _user_by_email(session, email: str) -> User:
    user = session.scalar(select(User).where(User.email == email.strip().lower()))
    if not user:
        raise NotFoundError(f"No user with email {email}")
    return user


def rotate_user_token(email: str) -> str:
    token = secrets.token_urlsafe(32)
    with get_session() as session:
        user = _user_by_email(session, email)
        user.api_token = token
    return token


def set_role(email: str, role: str | Role, *, role_label: str | None = None) -> User:
    parsed = _parse_role(role)
    with get_session() as session:
        user = _user_by_email(session, email)
        user.role = parsed.value
        if role_label is not None:
            user.role_label = role_label.strip()
        logger.info("Role of %s set to %s", user.email, user.role)
        return user


def find_user_by_token(session, token: str | None) -> User | None:
    if not token:
        return None
    return session.scalar(select(User).where(User.api_token == token))
