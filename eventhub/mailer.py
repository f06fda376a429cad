"""Best-effort outbound email."""

from __future__ import annotations

import logging
import re
import smtplib
import ssl
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from sqlalchemy.orm import Session

from . import config
from .database import on_commit
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")

_tag_pattern = re.compile(r"<[^>]*>")


@dataclass
class OutboundEmail:
    to: str
    subject: str
    html: str
    attempts: int = 0
    last_attempt: datetime | None = None
    error: str | None = None


def _plain_text(html: str) -> str:
    return _tag_pattern.sub("", html).strip()


def send_email(to: str, subject: str, html: str) -> bool:
    """Deliver one message over SMTP. Returns False on any delivery failure.

    When SMTP is not configured the message is logged and counted as sent.
    """
    settings = config.settings
    if not settings.smtp_configured:
        logger.info("SMTP not configured; skipping email to %s (%s)", to, subject)
        return True

    message = MIMEMultipart("alternative")
    message["Subject"] = subject
    message["From"] = settings.email_sender
    message["To"] = to
    message.attach(MIMEText(_plain_text(html), "plain"))
    message.attach(MIMEText(html, "html"))

    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as server:
            if settings.smtp_use_tls:
                server.starttls(context=ssl.create_default_context())
            if settings.smtp_username:
                server.login(settings.smtp_username, settings.smtp_password)
            server.sendmail(settings.email_sender, [to], message.as_string())
    except (smtplib.SMTPException, OSError) as exc:
        logger.warning("Email to %s failed: %s", to, exc)
        return False
    logger.info("Email sent to %s (%s)", to, subject)
    return True


class EmailQueue:
    """FIFO of pending messages, retried up to ``max_attempts`` times each."""

    def __init__(self) -> None:
        self._pending: deque[OutboundEmail] = deque()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def enqueue(self, to: str, subject: str, html: str) -> OutboundEmail:
        email = OutboundEmail(to=to, subject=subject, html=html)
        with self._lock:
            self._pending.append(email)
        return email

    def pending(self) -> list[OutboundEmail]:
        with self._lock:
            return list(self._pending)

    def clear(self) -> None:
        with self._lock:
            self._pending.clear()

    def flush(self, *, max_attempts: int | None = None) -> dict[str, int]:
        """Attempt every queued message once; failures go back on the queue."""
        limit = max_attempts or config.settings.email_max_attempts
        with self._lock:
            batch = list(self._pending)
            self._pending.clear()

        stats = {"sent": 0, "retrying": 0, "dropped": 0}
        for email in batch:
            email.attempts += 1
            email.last_attempt = utcnow()
            if send_email(email.to, email.subject, email.html):
                stats["sent"] += 1
                continue
            email.error = "delivery failed"
            if email.attempts < limit:
                with self._lock:
                    self._pending.append(email)
                stats["retrying"] += 1
            else:
                logger.error(
                    "Giving up on email to %s after %d attempts",
                    email.to,
                    email.attempts,
                )
                stats["dropped"] += 1
        return stats


email_queue = EmailQueue()


def queue_email(session: Session, to: str, subject: str, html: str) -> None:
    """Queue a message for delivery once ``session`` commits."""
    on_commit(session, lambda: email_queue.enqueue(to, subject, html))
