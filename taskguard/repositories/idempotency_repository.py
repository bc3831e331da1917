import time
from typing import Dict, Optional
from sqlalchemy import delete, func, update
from sqlmodel import select
from taskguard.repositories.base_repository import BaseRepository
from taskguard.models.idempotency_claim import IdempotencyClaim

class IdempotencyRepository(BaseRepository):
    def get(self, claim_id: str, scope: str) -> Optional[IdempotencyClaim]:
        return self.session.get(IdempotencyClaim, (claim_id, scope), populate_existing=True)

    def claim(self, claim_id: str, scope: str, expires_at: float) -> bool:
        now = time.time()
        # an expired claim no longer blocks the key
        self._execute(
            delete(IdempotencyClaim).where(
                IdempotencyClaim.id == claim_id,
                IdempotencyClaim.scope == scope,
                IdempotencyClaim.expires_at <= now,
            )
        )
        won = self._insert_ignore(IdempotencyClaim, {
            "id": claim_id,
            "scope": scope,
            "processed_at": now,
            "expires_at": expires_at,
        })
        self.session.commit()
        return won

    def is_live(self, claim_id: str, scope: str) -> bool:
        stmt = select(IdempotencyClaim.id).where(
            IdempotencyClaim.id == claim_id,
            IdempotencyClaim.scope == scope,
            IdempotencyClaim.expires_at > time.time(),
        )
        return self.session.exec(stmt).first() is not None

    def release(self, claim_id: str, scope: str) -> bool:
        res = self._execute(
            delete(IdempotencyClaim).where(
                IdempotencyClaim.id == claim_id,
                IdempotencyClaim.scope == scope,
            )
        )
        self.session.commit()
        return res.rowcount > 0

    def release_scope(self, scope: str) -> int:
        res = self._execute(delete(IdempotencyClaim).where(IdempotencyClaim.scope == scope))
        self.session.commit()
        return res.rowcount

    def extend(self, claim_id: str, scope: str, expires_at: float) -> bool:
        won = self._update_where(
            update(IdempotencyClaim)
            .where(
                IdempotencyClaim.id == claim_id,
                IdempotencyClaim.scope == scope,
                IdempotencyClaim.expires_at > time.time(),
            )
            .values(expires_at=expires_at)
        )
        self.session.commit()
        return won

    def delete_expired(self) -> int:
        res = self._execute(delete(IdempotencyClaim).where(IdempotencyClaim.expires_at <= time.time()))
        self.session.commit()
        return res.rowcount

    def count_by_scope(self) -> Dict[str, int]:
        stmt = (
            select(IdempotencyClaim.scope, func.count())
            .where(IdempotencyClaim.expires_at > time.time())
            .group_by(IdempotencyClaim.scope)
        )
        return {scope: count for scope, count in self.session.exec(stmt).all()}
