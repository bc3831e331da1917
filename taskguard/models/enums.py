from enum import Enum, IntEnum

class Priority(IntEnum):
    CRITICAL = 1
    URGENT = 2
    NORMAL = 3
    BULK = 4
    MAINTENANCE = 5

    @classmethod
    def clamp(cls, value) -> "Priority":
        try:
            n = int(value)
        except (TypeError, ValueError):
            return cls.NORMAL
        return cls(min(max(n, cls.CRITICAL), cls.MAINTENANCE))

    @property
    def lane(self) -> str:
        return self.name.lower()

class DeadLetterReason(str, Enum):
    EXCEPTION = "EXCEPTION"
    MAX_RETRIES = "MAX_RETRIES"
    INVALID_PAYLOAD = "INVALID_PAYLOAD"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"

class DeadLetterStatus(str, Enum):
    PENDING = "PENDING"
    REPLAYED = "REPLAYED"
    DISMISSED = "DISMISSED"

class CircuitStatus(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"

class SagaStatus(str, Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    COMPENSATING = "COMPENSATING"
    COMPENSATION_FAILED = "COMPENSATION_FAILED"

class StepOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    COMPENSATED = "compensated"
    COMPENSATION_FAILED = "compensation_failed"

class JobOutcome(str, Enum):
    OK = "OK"
    RETRY_SCHEDULED = "RETRY_SCHEDULED"
    DEAD_LETTERED = "DEAD_LETTERED"
    THROTTLED = "THROTTLED"
    DUPLICATE = "DUPLICATE"

class JobEvent(str, Enum):
    SCHEDULED = "job.scheduled"
    STARTED = "job.started"
    COMPLETED = "job.completed"
    FAILED = "job.failed"
    RETRIED = "job.retried"
    DEAD_LETTERED = "job.dead_lettered"
    THROTTLED = "job.throttled"
    DUPLICATE = "job.duplicate"
    CANCELLED = "job.cancelled"
    DEAD_LETTER_REPLAYED = "dead_letter.replayed"
    DEAD_LETTER_DISMISSED = "dead_letter.dismissed"
    CIRCUIT_STATE_CHANGED = "circuit.state_changed"
    CIRCUIT_REJECTED = "circuit.rejected"
    RATE_LIMIT_BLOCKED = "rate_limit.blocked"
    RATE_LIMIT_UNBLOCKED = "rate_limit.unblocked"
    SAGA_STARTED = "saga.started"
    SAGA_STEP_COMPLETED = "saga.step_completed"
    SAGA_COMPLETED = "saga.completed"
    SAGA_COMPENSATING = "saga.compensating"
    SAGA_FAILED = "saga.failed"
