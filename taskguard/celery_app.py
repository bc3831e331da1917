from celery import Celery
from kombu import Queue
from taskguard.config import (
    REDIS_URL,
    LANES,
    IDEMPOTENCY_CLEANUP_INTERVAL_SECONDS,
    RATE_WINDOW_CLEANUP_INTERVAL_SECONDS,
    DEAD_LETTER_CLEANUP_INTERVAL_SECONDS,
    STALLED_SAGA_CHECK_INTERVAL_SECONDS,
)

celery_app = Celery("taskguard", broker=REDIS_URL, backend=REDIS_URL, include=["taskguard_worker.tasks"])

# One queue per priority lane; workers for critical lanes can be scaled separately
celery_app.conf.task_queues = [Queue(lane["queue"]) for lane in LANES.values()]
celery_app.conf.task_default_queue = LANES["normal"]["queue"]

celery_app.conf.beat_schedule = {
    "cleanup-idempotency-claims": {
        "task": "taskguard_worker.tasks.cleanup_idempotency_claims",
        "schedule": IDEMPOTENCY_CLEANUP_INTERVAL_SECONDS,
        "options": {"queue": LANES["maintenance"]["queue"]},
    },
    "cleanup-rate-windows": {
        "task": "taskguard_worker.tasks.cleanup_rate_windows",
        "schedule": RATE_WINDOW_CLEANUP_INTERVAL_SECONDS,
        "options": {"queue": LANES["maintenance"]["queue"]},
    },
    "cleanup-dead-letters": {
        "task": "taskguard_worker.tasks.cleanup_dead_letters",
        "schedule": DEAD_LETTER_CLEANUP_INTERVAL_SECONDS,
        "options": {"queue": LANES["maintenance"]["queue"]},
    },
    "report-stalled-sagas": {
        "task": "taskguard_worker.tasks.report_stalled_sagas",
        "schedule": STALLED_SAGA_CHECK_INTERVAL_SECONDS,
        "options": {"queue": LANES["maintenance"]["queue"]},
    },
}

# Enable priority support in Celery
celery_app.conf.task_acks_late = True
celery_app.conf.worker_prefetch_multiplier = 1
celery_app.conf.broker_transport_options = {
    'priority_steps': list(range(10)),  # Enable 0-9 priority levels
    'queue_order_strategy': 'priority',
}
