"""Typer CLI for EventHub."""

from __future__ import annotations

import json
import os
import shutil
import subprocess
import sys
from pathlib import Path

from sqlalchemy.exc import OperationalError
import typer
import uvicorn

from .config import (
    load_settings,
    settings,
    settings_as_dict,
    update_config_file,
)
from .errors import EventHubError
from .models import Role
from .scheduler import flush_email_queue, start_scheduler, stop_scheduler
from .seed import seed_fake_data
from .storage import (
    create_user,
    init_db,
    rotate_user_token,
    set_role,
    upgrade_database,
)

app = typer.Typer(help="EventHub command-line interface")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def _fail(message: str) -> None:
    typer.secho(message, err=True, fg=typer.colors.RED)
    raise typer.Exit(code=1)


def _readonly_hint(exc: OperationalError, action: str) -> None:
    message = str(getattr(exc, "orig", exc)).lower()
    if "readonly" in message or "read-only" in message:
        _fail(
            f"Unable to {action} because the database is read-only. "
            f"Ensure write access to {settings.database_path}."
        )
    raise exc


@app.command("upgrade-db")
def upgrade_db(
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Skip creating a .bak copy of the database before upgrading",
    ),
) -> None:
    """Upgrade the SQLite database schema if needed."""
    try:
        actions = upgrade_database(make_backup=not no_backup)
    except OperationalError as exc:
        _readonly_hint(exc, "upgrade")

    if not actions:
        typer.echo("Database already up to date.")
        return
    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("create-user")
def create_user_command(
    name: str = typer.Argument(..., help="Display name"),
    email: str = typer.Argument(..., help="Unique email address"),
    role: Role = typer.Option(Role.USER, "--role", help="Authorization role"),
    role_label: str = typer.Option("", "--label", help="Display-only role title"),
    community_name: str = typer.Option(
        "", "--community", help="Community name for community accounts"
    ),
) -> None:
    """Create an account and print its bearer token."""
    init_db()
    try:
        user = create_user(
            name,
            email,
            role=role,
            role_label=role_label,
            community_name=community_name,
        )
    except EventHubError as exc:
        _fail(exc.message)
    typer.echo(f"Created {user.role} {user.email} ({user.id})")
    typer.echo(user.api_token)


@app.command("rotate-token")
def rotate_token(email: str = typer.Argument(..., help="Account email")) -> None:
    """Issue a new bearer token for an account."""
    init_db()
    try:
        token = rotate_user_token(email)
    except EventHubError as exc:
        _fail(exc.message)
    except OperationalError as exc:
        _readonly_hint(exc, "rotate the token")
    typer.echo(token)


@app.command("promote")
def promote(
    email: str = typer.Argument(..., help="Account email"),
    role: Role = typer.Argument(..., help="New role"),
    role_label: str | None = typer.Option(
        None, "--label", help="Display-only role title"
    ),
) -> None:
    """Change an account's role."""
    init_db()
    try:
        user = set_role(email, role, role_label=role_label)
    except EventHubError as exc:
        _fail(exc.message)
    typer.echo(f"{user.email} is now {user.role}")


@app.command("flush-emails")
def flush_emails() -> None:
    """Attempt delivery of every queued email once."""
    stats = flush_email_queue()
    typer.echo(
        f"Email flush: {stats['sent']} sent, {stats['retrying']} retrying, "
        f"{stats['dropped']} dropped."
    )


@app.command("runserver")
def runserver(
    host: str = typer.Option(settings.app_host, "--host", help="Host to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
):
    """Start FastAPI with APScheduler."""
    init_db()
    if settings.enable_scheduler:
        start_scheduler()
    config = uvicorn.Config(
        "eventhub.api:app",
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    try:
        typer.echo(f"Starting EventHub on {host}:{port}")
        server.run()
    finally:
        stop_scheduler()


@app.command("seed-data")
def seed_data(
    communities: int = typer.Option(
        settings.seed_communities,
        "--communities",
        min=0,
        help="Number of community accounts to create",
    ),
    users: int = typer.Option(
        settings.seed_users, "--users", min=0, help="Number of regular accounts"
    ),
    max_events: int = typer.Option(
        settings.seed_events_per_community,
        "--max-events",
        min=1,
        help="Maximum events to create for each community",
    ),
    max_registrations: int = typer.Option(
        settings.seed_registrations_per_event,
        "--max-registrations",
        min=0,
        help="Maximum registrations to attach to each approved event",
    ),
):
    """Populate the database with fake accounts, events and registrations."""
    init_db()
    stats = seed_fake_data(
        community_count=communities,
        user_count=users,
        max_events_per_community=max_events,
        max_registrations_per_event=max_registrations,
    )
    typer.echo(
        f"Seed complete: {stats['users']} users, {stats['events']} events, "
        f"{stats['registrations']} registrations created."
    )
    typer.echo(f"Superadmin token: {stats['superadmin_token']}")


@app.command("config")
def configure(
    show: bool = typer.Option(
        False, "--show", help="Show the current effective configuration"
    ),
    host: str | None = typer.Option(None, "--host", help="Default host for runserver"),
    port: int | None = typer.Option(None, "--port", help="Default port for runserver"),
    config_path: Path | None = typer.Option(
        None, "--config-path", help="Path to eventhub.toml (default: ./eventhub.toml)"
    ),
    smtp_host: str | None = typer.Option(None, "--smtp-host", help="SMTP server"),
    smtp_port: int | None = typer.Option(None, "--smtp-port", help="SMTP port"),
    smtp_username: str | None = typer.Option(
        None, "--smtp-username", help="SMTP login"
    ),
    smtp_use_tls: bool | None = typer.Option(
        None, "--smtp-tls/--no-smtp-tls", help="Use STARTTLS"
    ),
    email_sender: str | None = typer.Option(
        None, "--email-sender", help="From address for outgoing mail"
    ),
    email_max_attempts: int | None = typer.Option(
        None, "--email-max-attempts", min=1, help="Delivery attempts per email"
    ),
    email_flush_seconds: int | None = typer.Option(
        None, "--email-flush-seconds", min=1, help="Seconds between queue flushes"
    ),
    calendar_event_hours: int | None = typer.Option(
        None,
        "--calendar-event-hours",
        min=1,
        help="Duration used for calendar links and ICS files",
    ),
    enable_scheduler: bool | None = typer.Option(
        None,
        "--enable-scheduler/--disable-scheduler",
        help="Toggle background scheduler (email flush)",
    ),
):
    """View or update the persistent configuration file."""

    updates = {
        "app_host": host,
        "app_port": port,
        "smtp_host": smtp_host,
        "smtp_port": smtp_port,
        "smtp_username": smtp_username,
        "smtp_use_tls": smtp_use_tls,
        "email_sender": email_sender,
        "email_max_attempts": email_max_attempts,
        "email_flush_seconds": email_flush_seconds,
        "calendar_event_hours": calendar_event_hours,
        "enable_scheduler": enable_scheduler,
    }
    clean_updates = {k: v for k, v in updates.items() if v is not None}

    target_path = config_path or settings.config_path
    if clean_updates:
        settings_ref = update_config_file(clean_updates, path=target_path)
        typer.echo(f"Updated configuration in {target_path}")
    else:
        settings_ref = load_settings(target_path)
    if show or not clean_updates:
        effective = settings_as_dict(settings_ref)
        effective["config_path"] = str(target_path)
        typer.echo(json.dumps(effective, indent=2))


@app.command("test")
def run_tests(pytest_args: list[str] = typer.Argument(None, help="Extra pytest args")):
    """Run the test suite with helpful defaults."""
    env = os.environ.copy()
    env.setdefault("PYTHONPATH", ".")
    uv_path = shutil.which("uv")
    if uv_path:
        cmd = [uv_path, "run", "pytest"]
    else:
        typer.echo("uv not found, falling back to python -m pytest")
        cmd = [sys.executable, "-m", "pytest"]
    if pytest_args:
        cmd.extend(pytest_args)
    typer.echo(f"Running tests: {' '.join(cmd)}")
    result = subprocess.run(cmd, env=env)
    raise typer.Exit(code=result.returncode)


if __name__ == "__main__":
    app()
