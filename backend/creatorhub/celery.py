import os
from celery import Celery
from celery.schedules import crontab as _celery_crontab

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'creatorhub.settings')

app = Celery('creatorhub')

# Using a string here means the worker doesn't have to serialize
# the configuration object to child processes.
app.config_from_object('django.conf:settings', namespace='CELERY')

# Load task modules from all registered Django apps.
app.autodiscover_tasks()

# Task routing configuration: money movement runs on its own queue
app.conf.task_routes = {
    "monetization.tasks.process_subscription_renewals": {"queue": "monetization"},
    "monetization.tasks.sync_processing_payouts": {"queue": "monetization"},
    "monetization.tasks.reconcile_wallets": {"queue": "monetization"},
    "monetization.tasks.cleanup_webhook_event_logs": {"queue": "maintenance"},
    "monetization.tasks.deliver_creator_notification": {"queue": "notifications"},

    # Default queue
    '*': {'queue': 'default'},
}

# Default queue configuration
app.conf.task_default_queue = 'default'

app.conf.update(
    # Serialization settings
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',

    # Timezone settings
    timezone='UTC',
    enable_utc=True,

    # Task execution settings
    task_track_started=True,
    task_time_limit=30 * 60,
    task_soft_time_limit=25 * 60,

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
    worker_disable_rate_limits=False,

    # Retry settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # Monitoring settings
    worker_send_task_events=True,
    task_send_sent_event=True,

    # Queue settings
    task_queues={
        'default': {
            'exchange': 'default',
            'routing_key': 'default',
        },
        'monetization': {
            'exchange': 'monetization',
            'routing_key': 'monetization',
        },
        'notifications': {
            'exchange': 'notifications',
            'routing_key': 'notifications',
        },
        'maintenance': {
            'exchange': 'maintenance',
            'routing_key': 'maintenance',
        },
    },

    # Task priority settings
    task_inherit_parent_priority=True,
    task_default_priority=5,

    # Error handling
    task_ignore_result=False,
    task_store_errors_even_if_ignored=True,
)

# A renewal run must finish before the next beat tick starts another one.
app.conf.task_annotations = {
    'monetization.tasks.process_subscription_renewals': {
        'time_limit': 14 * 60,
        'soft_time_limit': 12 * 60,
    },
    'monetization.tasks.deliver_creator_notification': {
        'rate_limit': '120/m',
        'max_retries': 3,
        'default_retry_delay': 30,
    },
}

# Celery Beat schedule configuration
# Defines periodic tasks and their execution times.

class VerboseCrontab(_celery_crontab):
    """Extend Celery's crontab schedule with a repr that shows the minute expression."""

    def __repr__(self) -> str:  # pragma: no cover - formatting helper only
        base = super().__repr__()
        minute_expr = getattr(self, "_orig_minute", None)
        if minute_expr and f"minute='{minute_expr}'" not in base:
            base = f"{base} minute='{minute_expr}'"
        return base


def crontab(*args, **kwargs):
    """Factory returning a VerboseCrontab to keep schedule repr stable for tests."""
    return VerboseCrontab(*args, **kwargs)


app.conf.beat_schedule = {
    "process_subscription_renewals_15min": {
        "task": "monetization.tasks.process_subscription_renewals",
        "schedule": crontab(minute="*/15"),
        "options": {"queue": "monetization", "priority": 2},
    },
    "sync_processing_payouts_10min": {
        "task": "monetization.tasks.sync_processing_payouts",
        "schedule": crontab(minute="*/10"),
        "options": {"queue": "monetization"},
    },
    "reconcile_wallets_daily": {
        "task": "monetization.tasks.reconcile_wallets",
        "schedule": crontab(hour=3, minute=0),
        "options": {"queue": "monetization"},
    },
    "cleanup_webhook_logs_daily": {
        "task": "monetization.tasks.cleanup_webhook_event_logs",
        "schedule": crontab(hour=4, minute=0),
        "options": {"queue": "maintenance"},
    },
}


# System health check task
@app.task(bind=True)
def health_check(self):
    """System health check task"""
    from django.db import connection

    try:
        # Check database connection
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")

        return {
            'status': 'healthy',
            'timestamp': app.now(),
            'worker_id': self.request.id,
        }
    except Exception as e:
        return {
            'status': 'unhealthy',
            'error': str(e),
            'timestamp': app.now(),
        }
