import time
from typing import Any, Dict, List, Optional
from sqlalchemy import delete, func, update
from sqlmodel import select
from taskguard.repositories.base_repository import BaseRepository
from taskguard.models.dead_letter import DeadLetterEntry
from taskguard.models.enums import DeadLetterReason, DeadLetterStatus

class DeadLetterRepository(BaseRepository):
    def get(self, entry_id: int) -> Optional[DeadLetterEntry]:
        return self.session.get(DeadLetterEntry, entry_id, populate_existing=True)

    def create(self, hook: str, args: Dict[str, Any], reason: DeadLetterReason, error_message: str,
               attempts: int, priority: int, meta: Optional[Dict[str, Any]] = None) -> DeadLetterEntry:
        entry = DeadLetterEntry(
            hook=hook,
            args=args,
            reason=reason,
            error_message=error_message,
            attempts=attempts,
            priority=priority,
            meta=meta or {},
        )
        self.session.add(entry)
        self.session.commit()
        self.session.refresh(entry)
        return entry

    def list_pending(self, limit: int, offset: int = 0,
                     reason: Optional[DeadLetterReason] = None) -> List[DeadLetterEntry]:
        stmt = select(DeadLetterEntry).where(DeadLetterEntry.status == DeadLetterStatus.PENDING)
        if reason is not None:
            stmt = stmt.where(DeadLetterEntry.reason == reason)
        stmt = stmt.order_by(DeadLetterEntry.created_at.desc(), DeadLetterEntry.id.desc())
        return list(self.session.exec(stmt.offset(offset).limit(limit)).all())

    def mark_replayed(self, entry_id: int) -> bool:
        won = self._update_where(
            update(DeadLetterEntry)
            .where(DeadLetterEntry.id == entry_id, DeadLetterEntry.status == DeadLetterStatus.PENDING)
            .values(status=DeadLetterStatus.REPLAYED, replayed_at=time.time())
        )
        self.session.commit()
        return won

    def revert_replay(self, entry_id: int) -> bool:
        won = self._update_where(
            update(DeadLetterEntry)
            .where(DeadLetterEntry.id == entry_id, DeadLetterEntry.status == DeadLetterStatus.REPLAYED)
            .values(status=DeadLetterStatus.PENDING, replayed_at=None)
        )
        self.session.commit()
        return won

    def mark_dismissed(self, entry_id: int) -> bool:
        won = self._update_where(
            update(DeadLetterEntry)
            .where(DeadLetterEntry.id == entry_id, DeadLetterEntry.status == DeadLetterStatus.PENDING)
            .values(status=DeadLetterStatus.DISMISSED, dismissed_at=time.time())
        )
        self.session.commit()
        return won

    def merge_meta(self, entry_id: int, extra: Dict[str, Any]):
        entry = self.get(entry_id)
        if not entry:
            return
        entry.meta = {**(entry.meta or {}), **extra}
        self.session.add(entry)
        self.session.commit()

    def delete_resolved_before(self, cutoff: float) -> int:
        res = self._execute(
            delete(DeadLetterEntry).where(
                DeadLetterEntry.status.in_([DeadLetterStatus.REPLAYED, DeadLetterStatus.DISMISSED]),
                DeadLetterEntry.created_at < cutoff,
            )
        )
        self.session.commit()
        return res.rowcount

    def count_by_status(self) -> Dict[str, int]:
        stmt = select(DeadLetterEntry.status, func.count()).group_by(DeadLetterEntry.status)
        return {DeadLetterStatus(status).value: count for status, count in self.session.exec(stmt).all()}

    def count_pending_by_reason(self) -> Dict[str, int]:
        stmt = (
            select(DeadLetterEntry.reason, func.count())
            .where(DeadLetterEntry.status == DeadLetterStatus.PENDING)
            .group_by(DeadLetterEntry.reason)
        )
        return {DeadLetterReason(reason).value: count for reason, count in self.session.exec(stmt).all()}

    def count_pending_by_hook(self) -> Dict[str, int]:
        stmt = (
            select(DeadLetterEntry.hook, func.count())
            .where(DeadLetterEntry.status == DeadLetterStatus.PENDING)
            .group_by(DeadLetterEntry.hook)
        )
        return {hook: count for hook, count in self.session.exec(stmt).all()}

    def count_created_since(self, since: float) -> int:
        stmt = select(func.count()).select_from(DeadLetterEntry).where(DeadLetterEntry.created_at >= since)
        return self.session.exec(stmt).one()
