"""APScheduler integration."""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from . import config
from .mailer import email_queue

logger = logging.getLogger("uvicorn.error")

_scheduler: BackgroundScheduler | None = None


def flush_email_queue() -> dict[str, int]:
    if not len(email_queue):
        return {"sent": 0, "retrying": 0, "dropped": 0}
    stats = email_queue.flush()
    logger.info(
        "Email flush: %d sent, %d retrying, %d dropped",
        stats["sent"],
        stats["retrying"],
        stats["dropped"],
    )
    return stats


def start_scheduler() -> BackgroundScheduler:
    global _scheduler
    if _scheduler and _scheduler.running:
        return _scheduler
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        flush_email_queue,
        "interval",
        seconds=config.settings.email_flush_seconds,
        id="email-flush",
        max_instances=1,
        replace_existing=True,
    )
    scheduler.start()
    _scheduler = scheduler
    return scheduler


def stop_scheduler() -> None:
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        _scheduler = None
