import logging
import time
from typing import List, Optional
from sqlalchemy import update
from sqlmodel import select
from taskguard.repositories.base_repository import BaseRepository
from taskguard.models.circuit_state import CircuitState
from taskguard.models.enums import CircuitStatus

logger = logging.getLogger(__name__)

class CircuitRepository(BaseRepository):
    def get(self, name: str) -> Optional[CircuitState]:
        return self.session.get(CircuitState, name, populate_existing=True)

    def ensure(self, name: str) -> CircuitState:
        if self._insert_ignore(CircuitState, {
            "name": name,
            "state": CircuitStatus.CLOSED,
            "failures": 0,
            "successes": 0,
            "updated_at": time.time(),
        }):
            logger.info("Circuit registered", extra={"dependency": name})
        self.session.commit()
        return self.get(name)

    def list_all(self) -> List[CircuitState]:
        return list(self.session.exec(select(CircuitState).order_by(CircuitState.name)).all())

    def _commit_if(self, stmt) -> bool:
        won = self._update_where(stmt)
        self.session.commit()
        return won

    def record_closed_failure(self, name: str) -> bool:
        return self._commit_if(
            update(CircuitState)
            .where(CircuitState.name == name, CircuitState.state == CircuitStatus.CLOSED)
            .values(failures=CircuitState.failures + 1, updated_at=time.time())
        )

    def record_closed_success(self, name: str) -> bool:
        return self._commit_if(
            update(CircuitState)
            .where(CircuitState.name == name, CircuitState.state == CircuitStatus.CLOSED)
            .values(failures=0, successes=CircuitState.successes + 1, updated_at=time.time())
        )

    def trip(self, name: str, threshold: int) -> bool:
        """CLOSED -> OPEN once the failure count reaches the threshold. One caller wins."""
        now = time.time()
        return self._commit_if(
            update(CircuitState)
            .where(
                CircuitState.name == name,
                CircuitState.state == CircuitStatus.CLOSED,
                CircuitState.failures >= threshold,
            )
            .values(state=CircuitStatus.OPEN, opened_at=now, successes=0, updated_at=now)
        )

    def begin_trial(self, name: str, cooldown: float) -> bool:
        """OPEN -> HALF_OPEN after the cooldown. Exactly one caller gets the trial."""
        now = time.time()
        return self._commit_if(
            update(CircuitState)
            .where(
                CircuitState.name == name,
                CircuitState.state == CircuitStatus.OPEN,
                CircuitState.opened_at <= now - cooldown,
            )
            .values(state=CircuitStatus.HALF_OPEN, trial_started_at=now, updated_at=now)
        )

    def reclaim_trial(self, name: str, cooldown: float) -> bool:
        """Take over a HALF_OPEN trial whose caller never reported back."""
        now = time.time()
        return self._commit_if(
            update(CircuitState)
            .where(
                CircuitState.name == name,
                CircuitState.state == CircuitStatus.HALF_OPEN,
                CircuitState.trial_started_at <= now - cooldown,
            )
            .values(trial_started_at=now, updated_at=now)
        )

    def close_from_trial(self, name: str) -> bool:
        return self._commit_if(
            update(CircuitState)
            .where(CircuitState.name == name, CircuitState.state == CircuitStatus.HALF_OPEN)
            .values(state=CircuitStatus.CLOSED, failures=0, successes=0,
                    opened_at=None, trial_started_at=None, updated_at=time.time())
        )

    def reopen_from_trial(self, name: str) -> bool:
        now = time.time()
        return self._commit_if(
            update(CircuitState)
            .where(CircuitState.name == name, CircuitState.state == CircuitStatus.HALF_OPEN)
            .values(state=CircuitStatus.OPEN, opened_at=now, trial_started_at=None,
                    failures=CircuitState.failures + 1, updated_at=now)
        )

    def force(self, name: str, state: CircuitStatus) -> bool:
        now = time.time()
        values = {"state": state, "trial_started_at": None, "updated_at": now}
        if state == CircuitStatus.OPEN:
            values["opened_at"] = now
        else:
            values.update(failures=0, successes=0, opened_at=None)
        return self._commit_if(update(CircuitState).where(CircuitState.name == name).values(**values))
