"""
Celery tasks for background job processing.
"""
from decksync.tasks.celery_app import celery_app
from decksync.tasks.tournaments import sync_limitless

__all__ = [
    "celery_app",
    "sync_limitless",
]
