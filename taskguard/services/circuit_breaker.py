import logging
import time
from typing import Any, Callable, Dict, List, Optional

from taskguard.config import CIRCUIT_BREAKERS, CIRCUIT_COOLDOWN_SECONDS, CIRCUIT_FAILURE_THRESHOLD
from taskguard.models.circuit_state import CircuitState
from taskguard.models.enums import CircuitStatus, JobEvent
from taskguard.repositories.circuit_repository import CircuitRepository
from taskguard.services.error_taxonomy import CircuitOpenError, is_dependency_failure

logger = logging.getLogger(__name__)

class CircuitBreaker:
    """
    Per-dependency circuit breaker persisted in circuit_state.

    CLOSED counts consecutive dependency failures and trips to OPEN at the
    threshold. OPEN rejects calls until the cooldown has elapsed, then the
    first caller moves it to HALF_OPEN and becomes the single trial call;
    everyone else keeps failing fast. The trial's outcome closes the circuit
    or re-opens it with a fresh cooldown. Each transition is one conditional
    UPDATE, so concurrent workers agree on a single winner.
    """

    def __init__(self, repo: CircuitRepository, events=None):
        self.repo = repo
        self.events = events

    def _conf(self, name: str) -> Dict[str, int]:
        conf = CIRCUIT_BREAKERS.get(name, {})
        return {
            "failure_threshold": conf.get("failure_threshold", CIRCUIT_FAILURE_THRESHOLD),
            "cooldown": conf.get("cooldown", CIRCUIT_COOLDOWN_SECONDS),
        }

    def _changed(self, name: str, old: CircuitStatus, new: CircuitStatus, **fields):
        logger.warning("Circuit %s: %s -> %s", name, old.value, new.value, extra={"dependency": name})
        if self.events:
            self.events.emit(JobEvent.CIRCUIT_STATE_CHANGED, dependency=name,
                             from_state=old.value, to_state=new.value, **fields)

    def get_state(self, name: str) -> CircuitStatus:
        return self.repo.ensure(name).state

    def _acquire(self, name: str) -> Optional[CircuitStatus]:
        """Return the mode the caller runs in (CLOSED or HALF_OPEN trial), or None if rejected."""
        state = self.repo.ensure(name)
        if state.state == CircuitStatus.CLOSED:
            return CircuitStatus.CLOSED

        cooldown = self._conf(name)["cooldown"]
        if state.state == CircuitStatus.OPEN:
            if self.repo.begin_trial(name, cooldown):
                self._changed(name, CircuitStatus.OPEN, CircuitStatus.HALF_OPEN)
                return CircuitStatus.HALF_OPEN
            return None

        # HALF_OPEN: a trial is in flight unless its caller died
        if self.repo.reclaim_trial(name, cooldown):
            logger.warning("Circuit %s: stale trial reclaimed", name)
            return CircuitStatus.HALF_OPEN
        return None

    def is_available(self, name: str) -> bool:
        state = self.repo.ensure(name)
        if state.state == CircuitStatus.CLOSED:
            return True
        if state.state == CircuitStatus.OPEN:
            return (state.opened_at or 0) <= time.time() - self._conf(name)["cooldown"]
        return False

    def execute(self, name: str, callback: Callable[..., Any], *args,
                fallback: Optional[Callable[[], Any]] = None, **kwargs) -> Any:
        mode = self._acquire(name)
        if mode is None:
            if self.events:
                self.events.emit(JobEvent.CIRCUIT_REJECTED, dependency=name)
            if fallback is not None:
                return fallback()
            raise CircuitOpenError(name)

        try:
            result = callback(*args, **kwargs)
        except Exception as exc:
            if is_dependency_failure(exc):
                self._on_failure(name, mode, exc)
            else:
                # the dependency answered; the caller's own error says nothing about its health
                self._on_success(name, mode)
            raise

        self._on_success(name, mode)
        return result

    def _on_success(self, name: str, mode: CircuitStatus):
        if mode == CircuitStatus.HALF_OPEN:
            if self.repo.close_from_trial(name):
                self._changed(name, CircuitStatus.HALF_OPEN, CircuitStatus.CLOSED)
        else:
            self.repo.record_closed_success(name)

    def _on_failure(self, name: str, mode: CircuitStatus, exc: Optional[BaseException] = None):
        error = str(exc) if exc is not None else None
        if mode == CircuitStatus.HALF_OPEN:
            if self.repo.reopen_from_trial(name):
                self._changed(name, CircuitStatus.HALF_OPEN, CircuitStatus.OPEN, error=error)
            return

        self.repo.record_closed_failure(name)
        if self.repo.trip(name, self._conf(name)["failure_threshold"]):
            self._changed(name, CircuitStatus.CLOSED, CircuitStatus.OPEN, error=error)

    def record_success(self, name: str):
        self._on_success(name, self.get_state(name))

    def record_failure(self, name: str, exc: Optional[BaseException] = None):
        state = self.get_state(name)
        if state == CircuitStatus.OPEN:
            return
        self._on_failure(name, state, exc)

    def open(self, name: str) -> bool:
        old = self.get_state(name)
        changed = self.repo.force(name, CircuitStatus.OPEN)
        if changed and old != CircuitStatus.OPEN:
            self._changed(name, old, CircuitStatus.OPEN, manual=True)
        return changed

    def close(self, name: str) -> bool:
        old = self.get_state(name)
        changed = self.repo.force(name, CircuitStatus.CLOSED)
        if changed and old != CircuitStatus.CLOSED:
            self._changed(name, old, CircuitStatus.CLOSED, manual=True)
        return changed

    def _metrics(self, state: CircuitState) -> Dict[str, Any]:
        conf = self._conf(state.name)
        return {
            "name": state.name,
            "state": state.state.value,
            "failures": state.failures,
            "successes": state.successes,
            "failure_threshold": conf["failure_threshold"],
            "cooldown": conf["cooldown"],
            "opened_at": state.opened_at,
            "updated_at": state.updated_at,
        }

    def metrics(self, name: str) -> Dict[str, Any]:
        return self._metrics(self.repo.ensure(name))

    def all_metrics(self) -> List[Dict[str, Any]]:
        return [self._metrics(s) for s in self.repo.list_all()]
