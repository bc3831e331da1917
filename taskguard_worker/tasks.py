import logging
from typing import Any

import redis
from celery import Task
from celery.signals import worker_process_init
from sqlalchemy.exc import OperationalError
from sqlmodel import Session

from taskguard.celery_app import celery_app
from taskguard.config import DEAD_LETTER_RETENTION_DAYS
from taskguard.dependencies import build_services, engine, init_db
from taskguard.jobs.registry import job_registry
from taskguard.jobs.registry_init import register_job_handlers
from taskguard.logging_config import setup_logging
from taskguard.models.enums import DeadLetterReason
from taskguard.schemas.envelopes import JobMeta, unwrap
from taskguard.services.error_taxonomy import InvalidPayloadError

logger = logging.getLogger(__name__)

register_job_handlers()

@worker_process_init.connect
def _init_worker(**kwargs):
    setup_logging()
    init_db()

class BaseTaskWithRetry(Task):
    # store/broker outages that stop the executor from recording its own decision
    autoretry_for = (redis.exceptions.RedisError, OperationalError)
    retry_kwargs = {"max_retries": 10, "countdown": 3}
    retry_backoff = True

@celery_app.task(bind=True, base=BaseTaskWithRetry, acks_late=True)
def dispatch_job(self, hook: str, payload: Any) -> str:
    with Session(engine) as session:
        services = build_services(session)
        if hook not in job_registry:
            return _dead_letter_unknown_hook(services, hook, payload)

        executor = job_registry.build(hook, services)
        return executor.execute(payload)

def _dead_letter_unknown_hook(services, hook: str, payload: Any) -> str:
    # the entry holds the job args and priority, not the envelope
    try:
        args, meta = unwrap(payload)
    except InvalidPayloadError:
        args, meta = (payload if isinstance(payload, dict) else {"payload": repr(payload)}), JobMeta()

    entry_id = services.dead_letters.add(
        hook, args,
        DeadLetterReason.INVALID_PAYLOAD,
        f"No job executor registered for hook: {hook}",
        attempts=meta.attempt,
        priority=meta.priority,
        metadata={"job_id": meta.job_id, "scheduled_at": meta.scheduled_at},
    )
    logger.error("Unknown hook dead-lettered", extra={"hook": hook, "entry_id": entry_id})
    return "DEAD_LETTERED"

@celery_app.task(base=BaseTaskWithRetry)
def cleanup_idempotency_claims() -> int:
    with Session(engine) as session:
        return build_services(session).idempotency.cleanup()

@celery_app.task(base=BaseTaskWithRetry)
def cleanup_rate_windows() -> int:
    with Session(engine) as session:
        return build_services(session).limiter.cleanup()

@celery_app.task(base=BaseTaskWithRetry)
def cleanup_dead_letters(max_age_days: int = DEAD_LETTER_RETENTION_DAYS) -> int:
    with Session(engine) as session:
        return build_services(session).dead_letters.cleanup(max_age_days)

@celery_app.task
def report_stalled_sagas() -> int:
    with Session(engine) as session:
        stalled = build_services(session).sagas.get_stalled()
        for record in stalled:
            logger.warning(
                "Saga has not progressed",
                extra={"saga_id": record.saga_id, "saga_type": record.saga_type,
                       "state": record.state.value, "updated_at": record.updated_at},
            )
        return len(stalled)
