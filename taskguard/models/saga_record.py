import time
from typing import Dict, List, Optional
from sqlmodel import SQLModel, Field, JSON
from taskguard.models.enums import SagaStatus

class SagaRecord(SQLModel, table=True):
    __tablename__ = "saga_record"

    saga_id: str = Field(primary_key=True, max_length=255)
    saga_type: str = Field(index=True)
    state: SagaStatus = Field(default=SagaStatus.RUNNING, index=True)

    context: Dict = Field(default_factory=dict, sa_type=JSON)
    log: List = Field(default_factory=list, sa_type=JSON)

    error: Optional[str] = None
    failed_step: Optional[str] = None

    # Exclusive run lease; only the token holder may checkpoint
    lease_token: Optional[str] = None
    lease_expires_at: Optional[float] = None

    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time, index=True)
