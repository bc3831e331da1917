from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional

class ScheduleJobRequest(BaseModel):
    hook: str
    args: Dict[str, Any] = Field(default_factory=dict)
    priority: int = Field(default=3, ge=1, le=5)
    delay: float = Field(default=0, ge=0)
    unique: bool = False

class RecurringJobRequest(BaseModel):
    hook: str
    args: Dict[str, Any] = Field(default_factory=dict)
    interval: int = Field(default=3600, ge=1)
    priority: int = Field(default=3, ge=1, le=5)

class CancelJobRequest(BaseModel):
    hook: str
    args: Dict[str, Any] = Field(default_factory=dict)

class JobScheduledResponse(BaseModel):
    success: bool
    job_id: Optional[str] = None
    hook: str
    priority: int
    lane: str
    duplicate: bool = False

class DeadLetterOut(BaseModel):
    id: int
    hook: str
    args: Dict[str, Any]
    reason: str
    error_message: Optional[str] = None
    attempts: int
    priority: int
    status: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: float
    replayed_at: Optional[float] = None
    dismissed_at: Optional[float] = None

    @classmethod
    def from_entry(cls, entry) -> "DeadLetterOut":
        return cls(
            id=entry.id,
            hook=entry.hook,
            args=entry.args or {},
            reason=entry.reason.value,
            error_message=entry.error_message,
            attempts=entry.attempts,
            priority=entry.priority,
            status=entry.status.value,
            metadata=entry.meta or {},
            created_at=entry.created_at,
            replayed_at=entry.replayed_at,
            dismissed_at=entry.dismissed_at,
        )

class ReplayRequest(BaseModel):
    delay: float = Field(default=0, ge=0)
    priority: Optional[int] = Field(default=None, ge=1, le=5)

class DismissRequest(BaseModel):
    reason: str = ""

class BlockRequest(BaseModel):
    identifier: str
    duration: int = Field(default=3600, ge=1)
    reason: str = ""

class UnblockRequest(BaseModel):
    identifier: str

class SagaOut(BaseModel):
    saga_id: str
    saga_type: str
    state: str
    context: Dict[str, Any]
    log: List[Dict[str, Any]]
    error: Optional[str] = None
    failed_step: Optional[str] = None
    created_at: float
    updated_at: float
