import time
from typing import Any, Dict, List, Optional
from sqlalchemy import or_, update
from sqlmodel import select
from taskguard.repositories.base_repository import BaseRepository
from taskguard.models.saga_record import SagaRecord
from taskguard.models.enums import SagaStatus

class SagaRepository(BaseRepository):
    def get(self, saga_id: str) -> Optional[SagaRecord]:
        return self.session.get(SagaRecord, saga_id, populate_existing=True)

    def create_if_absent(self, saga_id: str, saga_type: str, context: Dict[str, Any]) -> bool:
        now = time.time()
        created = self._insert_ignore(SagaRecord, {
            "saga_id": saga_id,
            "saga_type": saga_type,
            "state": SagaStatus.RUNNING,
            "context": context,
            "log": [],
            "created_at": now,
            "updated_at": now,
        })
        self.session.commit()
        return created

    def acquire_lease(self, saga_id: str, token: str, ttl: float) -> bool:
        now = time.time()
        won = self._update_where(
            update(SagaRecord)
            .where(
                SagaRecord.saga_id == saga_id,
                or_(
                    SagaRecord.lease_token.is_(None),
                    SagaRecord.lease_expires_at <= now,
                    SagaRecord.lease_token == token,
                ),
            )
            .values(lease_token=token, lease_expires_at=now + ttl, updated_at=now)
        )
        self.session.commit()
        return won

    def checkpoint(self, saga_id: str, token: str, state: SagaStatus, context: Dict[str, Any],
                   log: List[Dict[str, Any]], error: Optional[str] = None,
                   failed_step: Optional[str] = None, ttl: Optional[float] = None) -> bool:
        """Persist progress; only the current lease holder may write."""
        now = time.time()
        values = {
            "state": state,
            "context": context,
            "log": log,
            "error": error,
            "failed_step": failed_step,
            "updated_at": now,
        }
        if ttl is not None:
            values["lease_expires_at"] = now + ttl
        won = self._update_where(
            update(SagaRecord)
            .where(SagaRecord.saga_id == saga_id, SagaRecord.lease_token == token)
            .values(**values)
        )
        self.session.commit()
        return won

    def release_lease(self, saga_id: str, token: str) -> bool:
        won = self._update_where(
            update(SagaRecord)
            .where(SagaRecord.saga_id == saga_id, SagaRecord.lease_token == token)
            .values(lease_token=None, lease_expires_at=None)
        )
        self.session.commit()
        return won

    def list_stalled(self, older_than: float, limit: int = 50) -> List[SagaRecord]:
        stmt = (
            select(SagaRecord)
            .where(
                SagaRecord.state.in_([SagaStatus.RUNNING, SagaStatus.COMPENSATING]),
                SagaRecord.updated_at < older_than,
            )
            .order_by(SagaRecord.updated_at)
            .limit(limit)
        )
        return list(self.session.exec(stmt).all())
