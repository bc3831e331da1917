import time
from typing import Optional
from sqlmodel import SQLModel, Field

class RateWindow(SQLModel, table=True):
    __tablename__ = "rate_window"

    # sha256 hex of the caller identifier; raw identifiers are never stored
    identifier_hash: str = Field(primary_key=True, max_length=64)
    limit_type: str = Field(primary_key=True, max_length=64)
    window_start: int = Field(primary_key=True)

    request_count: int = Field(default=0)
    reason: Optional[str] = None

    created_at: float = Field(default_factory=time.time)
    expires_at: float = Field(index=True)
