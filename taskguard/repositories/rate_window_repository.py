import time
from typing import Optional
from sqlalchemy import delete, update
from sqlmodel import select
from taskguard.repositories.base_repository import BaseRepository
from taskguard.models.rate_window import RateWindow

BLOCKED_LIMIT_TYPE = "blocked"

class RateWindowRepository(BaseRepository):
    def get(self, identifier_hash: str, limit_type: str, window_start: int) -> Optional[RateWindow]:
        return self.session.get(RateWindow, (identifier_hash, limit_type, window_start), populate_existing=True)

    def active_block(self, identifier_hash: str) -> Optional[RateWindow]:
        stmt = select(RateWindow).where(
            RateWindow.identifier_hash == identifier_hash,
            RateWindow.limit_type == BLOCKED_LIMIT_TYPE,
            RateWindow.expires_at > time.time(),
        )
        return self.session.exec(stmt).first()

    def ensure_window(self, identifier_hash: str, limit_type: str, window_start: int, expires_at: float) -> bool:
        return self._insert_ignore(RateWindow, {
            "identifier_hash": identifier_hash,
            "limit_type": limit_type,
            "window_start": window_start,
            "request_count": 0,
            "created_at": time.time(),
            "expires_at": expires_at,
        })

    def increment_below(self, identifier_hash: str, limit_type: str, window_start: int, limit: int) -> bool:
        """Atomically count one request unless the window is already full."""
        return self._update_where(
            update(RateWindow)
            .where(
                RateWindow.identifier_hash == identifier_hash,
                RateWindow.limit_type == limit_type,
                RateWindow.window_start == window_start,
                RateWindow.request_count < limit,
            )
            .values(request_count=RateWindow.request_count + 1)
        )

    def increment(self, identifier_hash: str, limit_type: str, window_start: int) -> None:
        self._execute(
            update(RateWindow)
            .where(
                RateWindow.identifier_hash == identifier_hash,
                RateWindow.limit_type == limit_type,
                RateWindow.window_start == window_start,
            )
            .values(request_count=RateWindow.request_count + 1)
        )

    def count(self, identifier_hash: str, limit_type: str, window_start: int) -> int:
        stmt = select(RateWindow.request_count).where(
            RateWindow.identifier_hash == identifier_hash,
            RateWindow.limit_type == limit_type,
            RateWindow.window_start == window_start,
        )
        return self.session.exec(stmt).first() or 0

    def put_block(self, identifier_hash: str, expires_at: float, reason: str) -> None:
        self.delete_block(identifier_hash)
        self._insert_ignore(RateWindow, {
            "identifier_hash": identifier_hash,
            "limit_type": BLOCKED_LIMIT_TYPE,
            "window_start": 0,
            "request_count": 0,
            "reason": reason,
            "created_at": time.time(),
            "expires_at": expires_at,
        })

    def delete_block(self, identifier_hash: str) -> int:
        res = self._execute(
            delete(RateWindow).where(
                RateWindow.identifier_hash == identifier_hash,
                RateWindow.limit_type == BLOCKED_LIMIT_TYPE,
            )
        )
        return res.rowcount

    def delete_windows(self, identifier_hash: str, limit_type: str) -> int:
        res = self._execute(
            delete(RateWindow).where(
                RateWindow.identifier_hash == identifier_hash,
                RateWindow.limit_type == limit_type,
            )
        )
        return res.rowcount

    def delete_expired(self) -> int:
        res = self._execute(delete(RateWindow).where(RateWindow.expires_at <= time.time()))
        return res.rowcount
