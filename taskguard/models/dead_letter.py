import time
from typing import Dict, Optional
from sqlmodel import SQLModel, Field, JSON
from taskguard.models.enums import DeadLetterReason, DeadLetterStatus

class DeadLetterEntry(SQLModel, table=True):
    __tablename__ = "dead_letter_entry"

    id: Optional[int] = Field(default=None, primary_key=True)
    hook: str = Field(index=True)
    args: Dict = Field(default_factory=dict, sa_type=JSON)

    reason: DeadLetterReason = Field(index=True)
    error_message: Optional[str] = None
    attempts: int = Field(default=1)
    priority: int = Field(default=3)
    # "metadata" is reserved on declarative models
    meta: Dict = Field(default_factory=dict, sa_type=JSON)

    status: DeadLetterStatus = Field(default=DeadLetterStatus.PENDING, index=True)
    created_at: float = Field(default_factory=time.time, index=True)
    replayed_at: Optional[float] = None
    dismissed_at: Optional[float] = None
