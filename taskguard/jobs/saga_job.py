import logging
from typing import Any, Callable, Dict, List

from taskguard.config import SERVICES
from taskguard.models.enums import SagaStatus
from taskguard.services.error_taxonomy import ApplicationError, InvalidPayloadError
from taskguard.services.http_service_client import HTTPServiceClient
from taskguard.services.job_executor import JobExecutor
from taskguard.services.saga_orchestrator import SagaResult, SagaStep

logger = logging.getLogger(__name__)

SagaBuilder = Callable[[Dict[str, Any], "SagaJobExecutor"], List[SagaStep]]

saga_definitions: Dict[str, SagaBuilder] = {}

def register_saga(saga_type: str):
    def decorator(builder: SagaBuilder) -> SagaBuilder:
        saga_definitions[saga_type] = builder
        return builder
    return decorator

@register_saga("http_chain")
def http_chain(context: Dict[str, Any], executor: "SagaJobExecutor") -> List[SagaStep]:
    """
    Data-driven saga: each step calls a configured service and may name a
    compensating call.

    context["steps"] = [
        {"name": "reserve", "service": "catalog", "body": {...},
         "compensate": {"service": "catalog", "body": {...}}},
        ...
    ]
    """
    saga_id = context.get("saga_id", "")
    steps = []
    for step_conf in context.get("steps", []):
        if not isinstance(step_conf, dict) or not step_conf.get("name") or step_conf.get("service") not in SERVICES:
            raise InvalidPayloadError(f"Invalid http_chain step: {step_conf!r}")

        def action(ctx, step_conf=step_conf):
            return executor.client.call(step_conf["service"], step_conf.get("body", {}), f"{saga_id}:{step_conf['name']}")

        compensation = None
        undo = step_conf.get("compensate")
        if isinstance(undo, dict) and undo.get("service") in SERVICES:
            def compensation(ctx, step_conf=step_conf, undo=undo):
                return executor.client.call(undo["service"], undo.get("body", {}),
                                            f"{saga_id}:{step_conf['name']}:compensate")

        steps.append(SagaStep(
            name=step_conf["name"],
            action=action,
            compensation=compensation,
            dependency=step_conf["service"],
            critical=step_conf.get("critical", True),
        ))
    return steps

class SagaJobExecutor(JobExecutor):
    """
    Runs a registered saga definition as a job.

    args: {"saga_id": ..., "saga_type": ..., "context": {...}}

    A saga that rolled back cleanly is a finished job. One whose rollback
    left compensation errors is dead-lettered for an operator; a saga held by
    another worker is retried later.
    """

    hook_name = "saga"

    def __init__(self, *args, sagas=None, client: HTTPServiceClient = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.sagas = sagas
        self.client = client or HTTPServiceClient()

    @classmethod
    def from_services(cls, services) -> "SagaJobExecutor":
        return cls(services.scheduler, services.dead_letters, services.idempotency,
                   breaker=services.breaker, events=services.events,
                   sagas=services.sagas, client=services.http_client)

    def process(self, args: Dict[str, Any]) -> SagaResult:
        saga_id = args.get("saga_id")
        saga_type = args.get("saga_type")
        if not saga_id or saga_type not in saga_definitions:
            raise InvalidPayloadError(f"Unknown saga {saga_type!r} or missing saga_id")

        context = dict(args.get("context") or {}, saga_id=saga_id)
        steps = saga_definitions[saga_type](context, self)
        result = self.sagas.run(saga_id, saga_type, steps, context)

        if result.state == SagaStatus.COMPENSATION_FAILED:
            raise ApplicationError(
                f"Saga {saga_id} failed at {result.failed_step} and could not be fully compensated",
                code="SAGA_COMPENSATION_FAILED",
                details={"compensation_errors": result.compensation_errors},
            )
        if not result.success:
            logger.warning("Saga rolled back", extra={"saga_id": saga_id, "failed_step": result.failed_step})
        return result
