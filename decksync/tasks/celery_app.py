"""
Celery application for scheduled tournament syncs.

Schedule:
- Limitless tournament sync: at minute 15 of every ``sync_schedule_hours``
  (default every 6 hours), visiting only tournaments that still lack decks
"""
from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging as celery_setup_logging

from decksync.core.config import settings
from decksync.core.logging import setup_logging

celery_app = Celery(
    "decksync",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["decksync.tasks.tournaments"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Redelivered when a worker dies mid-sync
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # Run summaries are kept for a day
    result_expires=86400,

    # One long sync per worker slot
    worker_prefetch_multiplier=1,
    worker_concurrency=2,

    beat_schedule={
        "tournaments-sync-limitless": {
            "task": "decksync.tasks.tournaments.sync_limitless",
            "schedule": crontab(hour=settings.sync_schedule_hours, minute=15),
            "kwargs": {"only_missing_decks": True},
        },
    },

    task_routes={
        "decksync.tasks.tournaments.*": {"queue": "ingestion"},
    },
    task_default_queue="default",
)


@celery_setup_logging.connect
def configure_worker_logging(**kwargs):
    """Use the structlog setup instead of Celery's own root logger handlers."""
    setup_logging()
