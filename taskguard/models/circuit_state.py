import time
from typing import Optional
from sqlmodel import SQLModel, Field
from taskguard.models.enums import CircuitStatus

class CircuitState(SQLModel, table=True):
    __tablename__ = "circuit_state"

    name: str = Field(primary_key=True, max_length=100)
    state: CircuitStatus = Field(default=CircuitStatus.CLOSED)
    failures: int = Field(default=0)
    successes: int = Field(default=0)

    opened_at: Optional[float] = None
    trial_started_at: Optional[float] = None
    updated_at: float = Field(default_factory=time.time)
