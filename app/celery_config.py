from celery import Celery
from celery.schedules import crontab
from kombu import Queue
import logging

from config import settings

logger = logging.getLogger(__name__)

CELERY_NAMESPACE = settings.REDIS_KEY_PREFIX.replace(":", "_")


def _queue_name(base_name: str) -> str:
    return f"{CELERY_NAMESPACE}.{base_name}"


def _sweep_schedule(interval_minutes: int) -> crontab:
    """Crontab for the session sweep; whole hours run at minute 0"""
    if interval_minutes >= 60 and interval_minutes % 60 == 0:
        hours = interval_minutes // 60
        return crontab(minute=0, hour='*' if hours == 1 else f'*/{hours}')
    return crontab(minute=f'*/{max(interval_minutes, 1)}')


# Initialize Celery app
celery_app = Celery(
    f'{CELERY_NAMESPACE}.auth',
    broker=settings.CELERY_BROKER_URL or settings.REDIS_URL,
    backend=settings.CELERY_RESULT_BACKEND or settings.REDIS_URL,
    include=[
        'app.tasks.session_tasks',
    ]
)

# Celery Configuration
celery_app.conf.update(
    # Task serialization
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',

    # Timezone settings
    timezone='UTC',
    enable_utc=True,

    # Task execution settings
    task_track_started=True,
    task_time_limit=10 * 60,  # 10 minutes hard limit
    task_soft_time_limit=8 * 60,  # 8 minutes soft limit
    task_acks_late=True,  # Task acknowledged after execution
    task_reject_on_worker_lost=True,

    # Worker settings
    worker_prefetch_multiplier=1,  # One task at a time
    worker_max_tasks_per_child=1000,  # Restart worker after 1000 tasks

    # Result backend settings
    result_expires=7200,  # Results expire after 2 hours

    # Broker settings
    broker_connection_retry_on_startup=True,
    broker_connection_retry=True,
    broker_connection_max_retries=10,

    # Queue settings
    task_default_queue=_queue_name('auth_tasks'),
    task_default_exchange=_queue_name('auth_tasks'),
    task_default_routing_key='auth.default',

    # Task routing
    task_routes={
        'app.tasks.session_tasks.cleanup_expired_sessions': {
            'queue': _queue_name('session_maintenance'),
            'routing_key': 'sessions.maintenance'
        },
    },

    # Define queues
    task_queues=(
        Queue(_queue_name('session_maintenance'), routing_key='sessions.maintenance'),
        Queue(_queue_name('auth_tasks'), routing_key='auth.default'),
    ),

    # Logging
    worker_hijack_root_logger=False,
    worker_log_format='[%(asctime)s: %(levelname)s/%(processName)s] %(message)s',
    worker_task_log_format='[%(asctime)s: %(levelname)s/%(processName)s] [%(task_name)s(%(task_id)s)] %(message)s',
)

# Celery Beat Schedule (Periodic Tasks)
celery_app.conf.beat_schedule = {
    # Purge expired refresh sessions, hourly by default
    'cleanup-expired-sessions': {
        'task': 'app.tasks.session_tasks.cleanup_expired_sessions',
        'schedule': _sweep_schedule(settings.SESSION_CLEANUP_INTERVAL_MINUTES),
        'options': {
            'expires': settings.SESSION_CLEANUP_INTERVAL_MINUTES * 60,
        }
    },
}

logger.info("Celery app configured successfully")
