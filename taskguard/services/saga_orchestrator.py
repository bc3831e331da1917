import copy
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from tenacity import Retrying, before_sleep_log, retry_if_exception, stop_after_attempt, wait_exponential_jitter

from taskguard.config import SAGA_LEASE_SECONDS, SAGA_STALLED_AFTER_SECONDS
from taskguard.models.enums import JobEvent, SagaStatus, StepOutcome
from taskguard.models.saga_record import SagaRecord
from taskguard.repositories.saga_repository import SagaRepository
from taskguard.services.error_taxonomy import SagaConcurrencyError, is_retryable

logger = logging.getLogger(__name__)

TERMINAL_STATES = (SagaStatus.COMPLETED, SagaStatus.FAILED, SagaStatus.COMPENSATION_FAILED)

def _transient(exc: BaseException) -> bool:
    # crashes and interrupts are not step failures
    return isinstance(exc, Exception) and is_retryable(exc)

@dataclass
class SagaStep:
    name: str
    action: Callable[[Dict[str, Any]], Any]
    compensation: Optional[Callable[[Dict[str, Any]], Any]] = None
    dependency: Optional[str] = None
    critical: bool = True
    max_retries: int = 0

@dataclass
class SagaResult:
    saga_id: str
    success: bool
    state: SagaStatus
    step_results: Dict[str, Any] = field(default_factory=dict)
    context: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    failed_step: Optional[str] = None
    compensation_errors: List[Dict[str, str]] = field(default_factory=list)

    @property
    def fully_compensated(self) -> bool:
        return not self.success and not self.compensation_errors

def _jsonable(value: Any) -> Any:
    return json.loads(json.dumps(value, default=str))

def _entry(step: str, outcome: StepOutcome, error: Optional[str] = None) -> Dict[str, Any]:
    entry = {"step": step, "outcome": outcome.value, "timestamp": time.time()}
    if error is not None:
        entry["error"] = error
    return entry

def _coerce_steps(steps: Sequence[Any]) -> List[SagaStep]:
    out = []
    for i, step in enumerate(steps):
        if isinstance(step, SagaStep):
            out.append(step)
        elif isinstance(step, tuple) and len(step) == 2:
            out.append(SagaStep(f"step_{i + 1}", step[0], step[1]))
        elif isinstance(step, tuple) and len(step) == 3:
            out.append(SagaStep(step[0], step[1], step[2]))
        else:
            raise TypeError(f"Saga step at index {i} must be a SagaStep or an (action, compensation) tuple")
    names = [s.name for s in out]
    if len(set(names)) != len(names):
        raise ValueError("Saga step names must be unique")
    return out

class SagaOrchestrator:
    """
    Runs an ordered list of steps as a compensable transaction.

    Progress lives in saga_record: after every step the context and the step
    log are checkpointed, so re-running the same ``saga_id`` skips finished
    steps and a saga caught mid-rollback finishes its rollback. A lease on the
    record keeps two workers from driving the same saga at once.

    Final states: COMPLETED, FAILED (rolled back cleanly) or
    COMPENSATION_FAILED (at least one compensation raised and needs an
    operator).
    """

    def __init__(self, repo: SagaRepository, breaker=None, events=None,
                 lease_seconds: int = SAGA_LEASE_SECONDS):
        self.repo = repo
        self.breaker = breaker
        self.events = events
        self.lease_seconds = lease_seconds

    def _emit(self, event: JobEvent, **fields):
        if self.events:
            self.events.emit(event, **fields)

    def get(self, saga_id: str) -> Optional[SagaRecord]:
        return self.repo.get(saga_id)

    def get_stalled(self, limit: int = 50, older_than: float = SAGA_STALLED_AFTER_SECONDS) -> List[SagaRecord]:
        return self.repo.list_stalled(time.time() - older_than, limit)

    def result_for(self, record: SagaRecord) -> SagaResult:
        context = copy.deepcopy(record.context or {})
        return SagaResult(
            saga_id=record.saga_id,
            success=record.state == SagaStatus.COMPLETED,
            state=record.state,
            step_results=context.get("step_results", {}),
            context=context,
            error=record.error,
            failed_step=record.failed_step,
            compensation_errors=[
                {"step": e["step"], "error": e.get("error", "")}
                for e in (record.log or [])
                if e.get("outcome") == StepOutcome.COMPENSATION_FAILED.value
            ],
        )

    def run(self, saga_id: str, saga_type: str, steps: Sequence[Any],
            context: Optional[Dict[str, Any]] = None) -> SagaResult:
        steps = _coerce_steps(steps)
        created = self.repo.create_if_absent(saga_id, saga_type, _jsonable(context or {}))

        record = self.repo.get(saga_id)
        if record.state in TERMINAL_STATES:
            logger.info("Saga already finished", extra={"saga_id": saga_id, "state": record.state.value})
            return self.result_for(record)

        token = str(uuid.uuid4())
        if not self.repo.acquire_lease(saga_id, token, self.lease_seconds):
            raise SagaConcurrencyError(f"Saga {saga_id} is being run by another worker", code="SAGA_LOCKED")

        try:
            record = self.repo.get(saga_id)
            if record.state in TERMINAL_STATES:
                return self.result_for(record)

            ctx = copy.deepcopy(record.context or {})
            ctx.setdefault("step_results", {})
            ctx["saga_id"] = saga_id
            ctx["saga_type"] = saga_type
            log = copy.deepcopy(record.log or [])

            if record.state == SagaStatus.COMPENSATING:
                logger.warning("Resuming saga rollback", extra={"saga_id": saga_id})
                return self._compensate(saga_id, token, steps, ctx, log, record.error, record.failed_step)

            if created:
                self._emit(JobEvent.SAGA_STARTED, saga_id=saga_id, saga_type=saga_type, steps=len(steps))
            return self._forward(saga_id, token, steps, ctx, log)
        finally:
            self.repo.release_lease(saga_id, token)

    def _checkpoint(self, saga_id: str, token: str, state: SagaStatus, ctx: Dict[str, Any],
                    log: List[Dict[str, Any]], error: Optional[str] = None, failed_step: Optional[str] = None):
        if not self.repo.checkpoint(saga_id, token, state, _jsonable(ctx), log, error, failed_step,
                                    ttl=self.lease_seconds):
            raise SagaConcurrencyError(f"Lost the lease on saga {saga_id}", code="SAGA_LEASE_LOST")

    def _call(self, step: SagaStep, fn: Callable[[Dict[str, Any]], Any], ctx: Dict[str, Any]) -> Any:
        if step.dependency and self.breaker is not None:
            return self.breaker.execute(step.dependency, fn, ctx)
        return fn(ctx)

    def _run_step(self, step: SagaStep, ctx: Dict[str, Any]) -> Any:
        retrying = Retrying(
            stop=stop_after_attempt(step.max_retries + 1),
            wait=wait_exponential_jitter(initial=0.1, max=2.0),
            retry=retry_if_exception(_transient),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retrying(self._call, step, step.action, ctx)

    def _forward(self, saga_id: str, token: str, steps: List[SagaStep],
                 ctx: Dict[str, Any], log: List[Dict[str, Any]]) -> SagaResult:
        done = {
            e["step"] for e in log
            if e.get("outcome") in (StepOutcome.COMPLETED.value, StepOutcome.SKIPPED.value)
        }

        for step in steps:
            if step.name in done:
                continue
            try:
                result = self._run_step(step, ctx)
            except Exception as exc:
                error = str(exc) or type(exc).__name__
                if not step.critical:
                    logger.warning("Non-critical saga step failed", extra={"saga_id": saga_id, "step": step.name})
                    ctx["step_results"][step.name] = {"error": error, "skipped": True}
                    log.append(_entry(step.name, StepOutcome.SKIPPED, error))
                    self._checkpoint(saga_id, token, SagaStatus.RUNNING, ctx, log)
                    continue

                logger.warning("Saga step failed, compensating",
                               extra={"saga_id": saga_id, "step": step.name, "error": error})
                log.append(_entry(step.name, StepOutcome.FAILED, error))
                self._checkpoint(saga_id, token, SagaStatus.COMPENSATING, ctx, log, error, step.name)
                self._emit(JobEvent.SAGA_COMPENSATING, saga_id=saga_id, failed_step=step.name, error=error)
                return self._compensate(saga_id, token, steps, ctx, log, error, step.name)

            ctx["step_results"][step.name] = _jsonable(result)
            ctx["last_result"] = ctx["step_results"][step.name]
            log.append(_entry(step.name, StepOutcome.COMPLETED))
            self._checkpoint(saga_id, token, SagaStatus.RUNNING, ctx, log)
            self._emit(JobEvent.SAGA_STEP_COMPLETED, saga_id=saga_id, step=step.name)

        self._checkpoint(saga_id, token, SagaStatus.COMPLETED, ctx, log)
        self._emit(JobEvent.SAGA_COMPLETED, saga_id=saga_id)
        return SagaResult(
            saga_id=saga_id,
            success=True,
            state=SagaStatus.COMPLETED,
            step_results=ctx["step_results"],
            context=ctx,
        )

    def _compensate(self, saga_id: str, token: str, steps: List[SagaStep], ctx: Dict[str, Any],
                    log: List[Dict[str, Any]], error: Optional[str], failed_step: Optional[str]) -> SagaResult:
        by_name = {s.name: s for s in steps}
        completed = [e["step"] for e in log if e.get("outcome") == StepOutcome.COMPLETED.value]
        unwound = {
            e["step"] for e in log
            if e.get("outcome") in (StepOutcome.COMPENSATED.value, StepOutcome.COMPENSATION_FAILED.value)
        }

        for name in reversed(completed):
            step = by_name.get(name)
            if name in unwound or step is None or step.compensation is None:
                continue
            comp_ctx = dict(ctx, compensation_for=name, step_result=ctx["step_results"].get(name))
            try:
                self._call(step, step.compensation, comp_ctx)
            except Exception as exc:
                # keep unwinding; the failure is recorded for an operator
                logger.exception("Saga compensation failed", extra={"saga_id": saga_id, "step": name})
                log.append(_entry(name, StepOutcome.COMPENSATION_FAILED, str(exc) or type(exc).__name__))
            else:
                log.append(_entry(name, StepOutcome.COMPENSATED))
            self._checkpoint(saga_id, token, SagaStatus.COMPENSATING, ctx, log, error, failed_step)

        compensation_errors = [
            {"step": e["step"], "error": e.get("error", "")}
            for e in log if e.get("outcome") == StepOutcome.COMPENSATION_FAILED.value
        ]
        final = SagaStatus.COMPENSATION_FAILED if compensation_errors else SagaStatus.FAILED
        self._checkpoint(saga_id, token, final, ctx, log, error, failed_step)
        self._emit(JobEvent.SAGA_FAILED, saga_id=saga_id, state=final.value, failed_step=failed_step,
                   compensation_errors=len(compensation_errors))

        return SagaResult(
            saga_id=saga_id,
            success=False,
            state=final,
            step_results=ctx["step_results"],
            context=ctx,
            error=error,
            failed_step=failed_step,
            compensation_errors=compensation_errors,
        )
