import logging
from typing import Any, Dict, Optional

from taskguard.config import (
    JOB_MAX_RETRIES,
    JOB_RETRY_BACKOFF_FACTOR,
    JOB_RETRY_BASE_DELAY_SECONDS,
    RETRY_CLAIM_TTL_HOURS,
    THROTTLE_RESCHEDULE_SECONDS,
)
from taskguard.logging_config import bind_job_context
from taskguard.models.enums import DeadLetterReason, JobEvent, JobOutcome
from taskguard.schemas.envelopes import JobEnvelope, JobMeta
from taskguard.services import error_taxonomy
from taskguard.services.error_taxonomy import CircuitOpenError, InvalidPayloadError
from taskguard.services.idempotency_service import SCOPE_QUEUE_RETRY, SCOPE_UNIQUE_JOB
from taskguard.services.priority_scheduler import canonical_args

logger = logging.getLogger(__name__)

class JobExecutor:
    """
    Base class for job handlers.

    Subclasses set ``hook_name`` and implement ``process(args)``; the retry
    policy is tuned by overriding ``should_retry``, ``get_max_retries`` or
    ``retry_delay``. Setting ``dependency`` routes ``process`` through the
    circuit breaker of that name.

    ``execute`` never raises for a job failure: the outcome is always one of
    ``JobOutcome`` and the job has been completed, re-scheduled, throttled or
    dead-lettered by the time it returns.
    """

    hook_name: str = ""
    max_retries: int = JOB_MAX_RETRIES
    base_delay: int = JOB_RETRY_BASE_DELAY_SECONDS
    backoff_factor: int = JOB_RETRY_BACKOFF_FACTOR
    dependency: Optional[str] = None

    def __init__(self, scheduler, dead_letters, idempotency, breaker=None, events=None):
        self.scheduler = scheduler
        self.dead_letters = dead_letters
        self.idempotency = idempotency
        self.breaker = breaker
        self.events = events

    @classmethod
    def from_services(cls, services) -> "JobExecutor":
        return cls(services.scheduler, services.dead_letters, services.idempotency,
                   breaker=services.breaker, events=services.events)

    def get_hook_name(self) -> str:
        return self.hook_name or type(self).__name__

    def process(self, args: Dict[str, Any]) -> Any:
        raise NotImplementedError

    def should_retry(self, exc: BaseException) -> bool:
        return error_taxonomy.should_retry(exc)

    def get_max_retries(self) -> int:
        return self.max_retries

    def retry_delay(self, attempt: int) -> int:
        return self.base_delay * self.backoff_factor ** (attempt - 1)

    def _emit(self, event: JobEvent, **fields):
        if self.events:
            self.events.emit(event, hook=self.get_hook_name(), **fields)

    def execute(self, payload: Any) -> str:
        hook = self.get_hook_name()
        try:
            args, meta = self.scheduler.unwrap(payload)
        except InvalidPayloadError as exc:
            raw = payload if isinstance(payload, dict) else {"payload": repr(payload)}
            entry_id = self.dead_letters.add(hook, raw, DeadLetterReason.INVALID_PAYLOAD, str(exc))
            self._emit(JobEvent.DEAD_LETTERED, reason=DeadLetterReason.INVALID_PAYLOAD.value, entry_id=entry_id)
            return JobOutcome.DEAD_LETTERED.value

        bind_job_context(hook=hook, job_id=meta.job_id, attempt=meta.attempt)

        if meta.unique_key:
            # the job is no longer pending, so an identical one may be queued again
            self.idempotency.release(meta.unique_key, SCOPE_UNIQUE_JOB)
        if meta.recurring:
            self.scheduler.schedule_next_occurrence(hook, args, meta)

        if not self.scheduler.check_rate_limit(meta.priority):
            job_id = self.scheduler.resubmit(hook, JobEnvelope(meta=meta, args=args), THROTTLE_RESCHEDULE_SECONDS)
            self._emit(JobEvent.THROTTLED, job_id=meta.job_id, next_job_id=job_id, lane=meta.priority.lane,
                       delay=THROTTLE_RESCHEDULE_SECONDS)
            return JobOutcome.THROTTLED.value

        self._emit(JobEvent.STARTED, job_id=meta.job_id, attempt=meta.attempt)
        try:
            if self.dependency and self.breaker is not None:
                self.breaker.execute(self.dependency, self.process, args)
            else:
                self.process(args)
        except Exception as exc:
            return self._handle_failure(hook, args, meta, exc)

        self._emit(JobEvent.COMPLETED, job_id=meta.job_id, attempt=meta.attempt)
        return JobOutcome.OK.value

    def _handle_failure(self, hook: str, args: Dict[str, Any], meta: JobMeta, exc: Exception) -> str:
        info = error_taxonomy.describe(exc)
        logger.warning("Job attempt failed: %s", info["error"], extra={"hook": hook, "attempt": meta.attempt,
                                                                      "layer": info["layer"]})
        self._emit(JobEvent.FAILED, job_id=meta.job_id, attempt=meta.attempt, **info)

        # one decision per failed attempt, even if the host delivered it twice
        decision_key = self.idempotency.generate_key(hook, meta.job_id or canonical_args(args), meta.attempt)
        if not self.idempotency.claim(decision_key, SCOPE_QUEUE_RETRY, ttl_hours=RETRY_CLAIM_TTL_HOURS):
            self._emit(JobEvent.DUPLICATE, job_id=meta.job_id, attempt=meta.attempt)
            return JobOutcome.DUPLICATE.value

        try:
            return self._decide(hook, args, meta, exc, info)
        except Exception:
            # the decision was not recorded; a redelivery has to be able to make it
            self.idempotency.abandon(decision_key, SCOPE_QUEUE_RETRY)
            raise

    def _decide(self, hook: str, args: Dict[str, Any], meta: JobMeta, exc: Exception,
                info: Dict[str, Any]) -> str:
        max_retries = self.get_max_retries()
        if self.should_retry(exc) and meta.attempt <= max_retries:
            delay = self.retry_delay(meta.attempt)
            job_id = self.scheduler.schedule(
                hook, args, meta.priority, delay,
                attempt=meta.attempt + 1,
                scheduled_at=meta.scheduled_at,
                replayed_from=meta.replayed_from,
            )
            self._emit(JobEvent.RETRIED, job_id=job_id, attempt=meta.attempt + 1, delay=delay)
            return JobOutcome.RETRY_SCHEDULED.value

        if isinstance(exc, CircuitOpenError):
            reason = DeadLetterReason.CIRCUIT_OPEN
        elif meta.attempt > max_retries:
            reason = DeadLetterReason.MAX_RETRIES
        else:
            reason = DeadLetterReason.EXCEPTION

        entry_id = self.dead_letters.add(
            hook, args, reason, info["error"],
            attempts=meta.attempt,
            priority=meta.priority,
            metadata={
                "job_id": meta.job_id,
                "scheduled_at": meta.scheduled_at,
                "error_type": info["error_type"],
                "error_code": info["error_code"],
                "layer": info["layer"],
            },
        )
        self._emit(JobEvent.DEAD_LETTERED, job_id=meta.job_id, reason=reason.value,
                   attempts=meta.attempt, entry_id=entry_id)
        return JobOutcome.DEAD_LETTERED.value
