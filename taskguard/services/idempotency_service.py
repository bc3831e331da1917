import hashlib
import logging
import time
from typing import Dict, Optional

from taskguard.config import IDEMPOTENCY_TTL_HOURS
from taskguard.repositories.idempotency_repository import IdempotencyRepository

logger = logging.getLogger(__name__)

SCOPE_WEBHOOK = "webhook"
SCOPE_NOTIFICATION = "notification"
SCOPE_ORDER = "order"
SCOPE_BROADCAST = "broadcast"
SCOPE_SYNC = "sync"
SCOPE_QUEUE_RETRY = "queue_retry"
SCOPE_UNIQUE_JOB = "unique_job"
SCOPE_RECURRENCE = "recurrence"

class IdempotencyService:
    """
    First-writer-wins claims on (id, scope).

    ``claim`` is a single insert-if-absent against the primary key, so under
    any number of concurrent callers exactly one gets True while the claim is
    live. Expired claims are removed in the same transaction before the insert.
    """

    def __init__(self, repo: IdempotencyRepository):
        self.repo = repo

    def claim(self, claim_id: str, scope: str = SCOPE_WEBHOOK, ttl_hours: Optional[float] = None) -> bool:
        ttl = IDEMPOTENCY_TTL_HOURS if ttl_hours is None else ttl_hours
        won = self.repo.claim(claim_id, scope, time.time() + ttl * 3600)
        if not won:
            logger.info("Duplicate claim rejected", extra={"claim_id": claim_id, "scope": scope})
        return won

    def claim_with_parts(self, scope: str, *parts, ttl_hours: Optional[float] = None) -> bool:
        return self.claim(self.generate_key(*parts), scope, ttl_hours)

    def is_claimed(self, claim_id: str, scope: str = SCOPE_WEBHOOK) -> bool:
        return self.repo.is_live(claim_id, scope)

    def release(self, claim_id: str, scope: str = SCOPE_WEBHOOK) -> bool:
        return self.repo.release(claim_id, scope)

    def abandon(self, claim_id: str, scope: str) -> bool:
        """Drop a claim whose follow-up work failed, discarding that work's unfinished transaction."""
        self.repo.session.rollback()
        return self.repo.release(claim_id, scope)

    def release_scope(self, scope: str) -> int:
        return self.repo.release_scope(scope)

    def extend_expiry(self, claim_id: str, scope: str, extra_hours: float) -> bool:
        claim = self.repo.get(claim_id, scope)
        if not claim or claim.expires_at <= time.time():
            return False
        return self.repo.extend(claim_id, scope, claim.expires_at + extra_hours * 3600)

    def cleanup(self) -> int:
        removed = self.repo.delete_expired()
        if removed:
            logger.info("Expired idempotency claims removed", extra={"count": removed})
        return removed

    def stats(self) -> Dict[str, int]:
        return self.repo.count_by_scope()

    @staticmethod
    def generate_key(*parts) -> str:
        return hashlib.sha256(":".join(str(p) for p in parts).encode("utf-8")).hexdigest()
