import json
import time
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator

from taskguard.models.enums import Priority
from taskguard.services.error_taxonomy import InvalidPayloadError

ENVELOPE_VERSION = 2

class JobMeta(BaseModel):
    priority: Priority = Priority.NORMAL
    scheduled_at: float = Field(default_factory=time.time)
    attempt: int = Field(default=1, ge=1)

    job_id: Optional[str] = None
    recurring: bool = False
    interval: Optional[int] = None
    recurrence_id: Optional[str] = None
    occurrence: Optional[int] = None
    unique_key: Optional[str] = None
    replayed_from: Optional[int] = None
    last_retry_at: Optional[float] = None

    @field_validator("priority", mode="before")
    @classmethod
    def clamp_priority(cls, v):
        return Priority.clamp(v)

class JobEnvelope(BaseModel):
    version: int = ENVELOPE_VERSION
    meta: JobMeta = Field(default_factory=JobMeta)
    args: Dict[str, Any] = Field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        meta = self.meta.model_dump(mode="json", exclude_none=True)
        return {"_version": self.version, "_meta": meta, "args": self.args}

def wrap(args: Any, priority: int = Priority.NORMAL, attempt: int = 1,
         scheduled_at: Optional[float] = None, **meta: Any) -> JobEnvelope:
    if not isinstance(args, dict):
        raise InvalidPayloadError(f"Job args must be an object, got {type(args).__name__}")
    try:
        json.dumps(args)
    except (TypeError, ValueError) as e:
        raise InvalidPayloadError(f"Job args are not JSON-serializable: {e}")

    try:
        job_meta = JobMeta(
            priority=priority,
            attempt=attempt,
            scheduled_at=time.time() if scheduled_at is None else scheduled_at,
            **meta,
        )
    except ValidationError as e:
        raise InvalidPayloadError(f"Invalid job metadata: {e}")
    return JobEnvelope(meta=job_meta, args=args)

LEGACY_META_KEY = "_job_meta"

def is_versioned(payload: Any) -> bool:
    return isinstance(payload, dict) and payload.get("_version") == ENVELOPE_VERSION

def _build_meta(raw: Any) -> JobMeta:
    if not isinstance(raw, dict):
        raise InvalidPayloadError("Job metadata must be an object")
    try:
        return JobMeta(**raw)
    except ValidationError as e:
        raise InvalidPayloadError(f"Invalid envelope metadata: {e}")

def unwrap(payload: Any) -> Tuple[Dict[str, Any], JobMeta]:
    """
    Split a stored payload into (args, meta).

    Version 2 payloads carry their metadata under ``_meta``. Anything else is
    a legacy payload: its body is the args, with metadata optionally inline
    under ``_job_meta``; without it the job runs as a first NORMAL attempt.
    """
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except ValueError:
            raise InvalidPayloadError("Payload is not valid JSON")

    if not isinstance(payload, dict):
        raise InvalidPayloadError(f"Payload must be an object, got {type(payload).__name__}")

    if not is_versioned(payload):
        args = dict(payload)
        inline = args.pop(LEGACY_META_KEY, None)
        return args, JobMeta() if inline is None else _build_meta(inline)

    args = payload.get("args", {})
    if not isinstance(args, dict):
        raise InvalidPayloadError("Envelope args must be an object")
    return args, _build_meta(payload.get("_meta", {}))
