"""
Celery application configuration.

Configures Celery for CRM background work with:
- Redis as message broker
- Campaign delivery on its own queue
- Beat schedule for scheduled campaigns and lead score refresh
"""

import logging

from celery import Celery
from kombu import Exchange, Queue

from ..core.config import settings


logger = logging.getLogger(__name__)


# =============================================================================
# Celery Application
# =============================================================================

celery_app = Celery(
    "taxcrm",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "taxcrm.tasks.crm_tasks",
    ],
)


# =============================================================================
# Celery Configuration
# =============================================================================

celery_app.conf.update(
    # Task execution settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task time limits
    task_time_limit=settings.celery_task_time_limit,  # Hard limit (kill task)
    task_soft_time_limit=settings.celery_task_time_limit - 30,  # Soft limit (raise exception)

    # Worker settings
    worker_prefetch_multiplier=1,  # Campaign sends are long-running
    worker_max_tasks_per_child=1000,

    # Result backend settings
    result_expires=3600,

    # Broker settings
    broker_connection_retry_on_startup=True,
    broker_connection_max_retries=10,

    # Task routing
    task_default_queue="default",
    task_default_exchange="default",
    task_default_routing_key="default",

    beat_scheduler="celery.beat:PersistentScheduler",
    beat_schedule_filename="/tmp/celerybeat-schedule",

    # Beat schedule for periodic tasks
    beat_schedule={
        "send-due-campaigns": {
            "task": "taxcrm.tasks.crm_tasks.send_due_campaigns_task",
            "schedule": 60.0,  # Every minute
        },
        "refresh-lead-scores": {
            "task": "taxcrm.tasks.crm_tasks.batch_update_scores_task",
            "schedule": 3600.0,  # Every hour
        },
    },
)


# =============================================================================
# Queue Configuration
# =============================================================================

default_exchange = Exchange("default", type="direct")
campaign_exchange = Exchange("campaigns", type="direct")

celery_app.conf.task_queues = (
    Queue(
        "default",
        default_exchange,
        routing_key="default",
    ),
    Queue(
        "campaigns",
        campaign_exchange,
        routing_key="campaigns",
    ),
)

celery_app.conf.task_routes = {
    "taxcrm.tasks.crm_tasks.send_campaign_task": {
        "queue": "campaigns",
        "routing_key": "campaigns",
    },
    "taxcrm.tasks.crm_tasks.send_due_campaigns_task": {
        "queue": "campaigns",
        "routing_key": "campaigns",
    },
}


# =============================================================================
# Startup Events
# =============================================================================

@celery_app.on_after_configure.connect
def setup_periodic_tasks(sender, **kwargs):
    """Configure periodic tasks on worker startup."""
    logger.info("Celery worker configured with periodic tasks")
