import os

from celery import Celery
from celery.schedules import crontab
from celery.utils.log import get_task_logger

from .database import SessionLocal
from .rbac import RequestContext
from .services import feed

# purpose: run feed synchronization and trash pruning outside the request lifecycle
# status: production
# depends_on: backend.reportfmt.services.feed

_logger = get_task_logger(__name__)

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "memory://")
celery_app = Celery("tasks", broker=CELERY_BROKER_URL)
celery_app.conf.task_always_eager = (
    CELERY_BROKER_URL == "memory://" or os.getenv("TESTING") == "1"
)

celery_app.conf.beat_schedule = {
    "sync-predefined-report-formats": {
        "task": "reportfmt.tasks.sync_predefined_report_formats",
        "schedule": crontab(minute=0),
    },
    "prune-report-format-trash": {
        "task": "reportfmt.tasks.prune_report_format_trash",
        "schedule": crontab(minute=30),
    },
}


@celery_app.task(name="reportfmt.tasks.sync_predefined_report_formats")
def sync_predefined_report_formats():
    db = SessionLocal()
    try:
        summary = feed.sync_report_formats(db, RequestContext.system())
    except feed.FeedSyncError as exc:
        _logger.warning("Report format feed sync failed: %s", exc)
        return {"error": str(exc)}
    finally:
        db.close()
    _logger.info("Report format feed sync: %s", summary)
    return summary


@celery_app.task(name="reportfmt.tasks.prune_report_format_trash")
def prune_report_format_trash():
    db = SessionLocal()
    try:
        removed = feed.check_db_report_formats_trash(db)
    finally:
        db.close()
    if removed:
        _logger.info("Removed %s orphaned trash report format dirs", removed)
    return removed


def enqueue_sync_predefined_report_formats():
    if celery_app.conf.task_always_eager:
        return sync_predefined_report_formats()
    return sync_predefined_report_formats.delay()


def enqueue_prune_report_format_trash():
    if celery_app.conf.task_always_eager:
        return prune_report_format_trash()
    return prune_report_format_trash.delay()
