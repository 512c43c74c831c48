"""Celery application configuration.

This module sets up the Celery app with:
- Redis as broker and result backend
- Task routing to the workflow and trigger queues
- Beat schedule that drives the job queue, cron triggers and recovery
"""

from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging as celery_setup_logging

from app.config import get_settings
from core.logging_config import setup_logging

settings = get_settings()


@celery_setup_logging.connect
def _configure_worker_logging(**kwargs):
    # Connecting this signal stops Celery from installing its own handlers
    setup_logging()

celery_app = Celery(
    "workflow_automation",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    task_routes={
        "worker.tasks.workflow.*": {"queue": "workflows"},
        "worker.tasks.schedule_poller.*": {"queue": "triggers"},
        "worker.tasks.*": {"queue": "default"},
    },
    task_default_queue="default",

    # Result expiration (24 hours)
    result_expires=86400,

    # Task execution limits
    task_soft_time_limit=300,
    task_time_limit=settings.JOB_CLAIM_TIMEOUT_SECONDS,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_reject_on_worker_lost=True,

    beat_schedule={
        "process-workflow-jobs": {
            "task": "worker.tasks.workflow.process_workflow_jobs",
            "schedule": settings.JOB_POLL_INTERVAL_SECONDS,
            "options": {"queue": "workflows"},
        },
        "poll-scheduled-workflows": {
            "task": "worker.tasks.schedule_poller.poll_scheduled_workflows",
            "schedule": crontab(minute="*/1"),  # Every minute
            "options": {"queue": "triggers"},
        },
        "recover-stalled-executions": {
            "task": "worker.tasks.workflow.recover_stalled_executions",
            "schedule": crontab(minute="*/10"),
            "options": {"queue": "workflows"},
        },
        "cleanup-old-jobs": {
            "task": "worker.tasks.maintenance.cleanup_old_jobs",
            "schedule": crontab(hour=3, minute=0),  # Daily at 3 AM
            "options": {"queue": "default"},
        },
    },

    include=[
        "worker.tasks.workflow",
        "worker.tasks.schedule_poller",
        "worker.tasks.maintenance",
    ],
)
