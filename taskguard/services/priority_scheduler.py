import json
import logging
import time
import uuid
from typing import Any, Dict, Optional, Tuple

from taskguard.config import (
    DEFAULT_RECURRING_INTERVAL_SECONDS,
    LANES,
    UNIQUE_JOB_TTL_HOURS,
)
from taskguard.models.enums import JobEvent, Priority
from taskguard.schemas.envelopes import JobEnvelope, JobMeta, unwrap, wrap
from taskguard.services.idempotency_service import SCOPE_RECURRENCE, SCOPE_UNIQUE_JOB

logger = logging.getLogger(__name__)

LANE_WINDOW_SECONDS = 60

def canonical_args(args: Dict[str, Any]) -> str:
    return json.dumps(args, sort_keys=True, separators=(",", ":"), default=str)

class PriorityScheduler:
    """
    Front door for producers: wraps args in a versioned envelope and hands it
    to the host scheduler on the lane that matches its priority.
    """

    def __init__(self, host, events=None, limiter=None, idempotency=None):
        self.host = host
        self.events = events
        self.limiter = limiter
        self.idempotency = idempotency

    @staticmethod
    def lane_for(priority: int) -> str:
        return Priority.clamp(priority).lane

    @staticmethod
    def unwrap(payload: Any) -> Tuple[Dict[str, Any], JobMeta]:
        return unwrap(payload)

    def _submit(self, hook: str, envelope: JobEnvelope, delay: float) -> str:
        job_id = envelope.meta.job_id or str(uuid.uuid4())
        envelope.meta.job_id = job_id
        self.host.submit(hook, envelope.to_payload(), time.time() + max(0.0, delay),
                         envelope.meta.priority, job_id)
        if self.events:
            self.events.emit(
                JobEvent.SCHEDULED,
                hook=hook,
                job_id=job_id,
                priority=int(envelope.meta.priority),
                lane=envelope.meta.priority.lane,
                attempt=envelope.meta.attempt,
                delay=delay,
            )
        return job_id

    def schedule(self, hook: str, args: Dict[str, Any], priority: int = Priority.NORMAL,
                 delay: float = 0, attempt: int = 1, scheduled_at: Optional[float] = None,
                 **meta: Any) -> str:
        envelope = wrap(args, priority=priority, attempt=attempt, scheduled_at=scheduled_at, **meta)
        return self._submit(hook, envelope, delay)

    def resubmit(self, hook: str, envelope: JobEnvelope, delay: float) -> str:
        """Submit an already wrapped job again, unchanged, under a fresh job id."""
        again = envelope.model_copy(deep=True)
        again.meta.job_id = None
        return self._submit(hook, again, delay)

    def schedule_recurring(self, hook: str, args: Dict[str, Any],
                           interval: int = DEFAULT_RECURRING_INTERVAL_SECONDS,
                           priority: int = Priority.NORMAL) -> str:
        if interval < 1:
            raise ValueError("interval must be at least one second")
        return self.schedule(
            hook, args, priority,
            recurring=True,
            interval=interval,
            recurrence_id=str(uuid.uuid4()),
            occurrence=1,
        )

    def schedule_next_occurrence(self, hook: str, args: Dict[str, Any], meta: JobMeta) -> Optional[str]:
        """Chain the next run of a recurring job; duplicate deliveries chain it only once."""
        if not meta.recurring or not meta.interval:
            return None
        occurrence = (meta.occurrence or 1) + 1
        if self.idempotency and meta.recurrence_id:
            claim_id = f"{meta.recurrence_id}:{occurrence}"
            ttl_hours = max(1.0, 2 * meta.interval / 3600)
            if not self.idempotency.claim(claim_id, SCOPE_RECURRENCE, ttl_hours=ttl_hours):
                return None
        return self.schedule(
            hook, args, meta.priority,
            delay=meta.interval,
            recurring=True,
            interval=meta.interval,
            recurrence_id=meta.recurrence_id,
            occurrence=occurrence,
        )

    def unique_key(self, hook: str, args: Dict[str, Any]) -> str:
        return self.idempotency.generate_key(hook, canonical_args(args))

    def schedule_unique(self, hook: str, args: Dict[str, Any], priority: int = Priority.NORMAL,
                        delay: float = 0) -> Optional[str]:
        """Schedule unless an identical (hook, args) job is already waiting to run."""
        if self.idempotency is None:
            raise RuntimeError("schedule_unique requires an IdempotencyService")
        key = self.unique_key(hook, args)
        if not self.idempotency.claim(key, SCOPE_UNIQUE_JOB, ttl_hours=UNIQUE_JOB_TTL_HOURS):
            logger.info("Identical job already pending", extra={"hook": hook})
            return None
        try:
            return self.schedule(hook, args, priority, delay, unique_key=key)
        except Exception:
            self.idempotency.release(key, SCOPE_UNIQUE_JOB)
            raise

    def cancel(self, hook: str, args: Dict[str, Any]) -> int:
        cancelled = self.host.cancel(hook, args)
        if self.idempotency is not None:
            self.idempotency.release(self.unique_key(hook, args), SCOPE_UNIQUE_JOB)
        if self.events:
            self.events.emit(JobEvent.CANCELLED, hook=hook, count=cancelled)
        return cancelled

    def check_rate_limit(self, priority: int) -> bool:
        """Per-lane admission against the lane's per-minute budget."""
        if self.limiter is None:
            return True
        lane = self.lane_for(priority)
        result = self.limiter.check_and_hit(
            f"queue_{lane}",
            "queue",
            limit=LANES[lane]["rate_per_minute"],
            window=LANE_WINDOW_SECONDS,
        )
        return result.allowed
