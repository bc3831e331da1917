import time
from sqlmodel import SQLModel, Field

class IdempotencyClaim(SQLModel, table=True):
    __tablename__ = "idempotency_claim"

    id: str = Field(primary_key=True, max_length=255)
    scope: str = Field(primary_key=True, max_length=64)
    processed_at: float = Field(default_factory=time.time)
    expires_at: float = Field(index=True)
