import logging
from typing import Any, Dict

from taskguard.config import SERVICES
from taskguard.services.error_taxonomy import InvalidPayloadError
from taskguard.services.http_service_client import HTTPServiceClient
from taskguard.services.job_executor import JobExecutor
from taskguard.services.priority_scheduler import canonical_args

logger = logging.getLogger(__name__)

SCOPE_OUTBOUND = "outbound"

class OutboundCallExecutor(JobExecutor):
    """
    Delivers one request to a configured dependency.

    args: {"service": <SERVICES key>, "body": {...}, "idempotency_key": optional}

    The call goes through the circuit breaker named after the service and
    carries an Idempotency-Key header. A delivered key is claimed afterwards
    so redelivered jobs skip the call.
    """

    hook_name = "outbound_call"

    def __init__(self, *args, client: HTTPServiceClient = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.client = client or HTTPServiceClient()

    @classmethod
    def from_services(cls, services) -> "OutboundCallExecutor":
        return cls(services.scheduler, services.dead_letters, services.idempotency,
                   breaker=services.breaker, events=services.events, client=services.http_client)

    def idempotency_key(self, service: str, body: Dict[str, Any], args: Dict[str, Any]) -> str:
        return args.get("idempotency_key") or self.idempotency.generate_key(service, canonical_args(body))

    def process(self, args: Dict[str, Any]) -> Any:
        service = args.get("service")
        body = args.get("body", {})
        if service not in SERVICES:
            raise InvalidPayloadError(f"Unknown service: {service!r}")
        if not isinstance(body, dict):
            raise InvalidPayloadError("body must be an object")

        key = self.idempotency_key(service, body, args)
        if self.idempotency.is_claimed(key, SCOPE_OUTBOUND):
            logger.info("Outbound call already delivered", extra={"service": service})
            return None

        if self.breaker is not None:
            out = self.breaker.execute(service, self.client.call, service, body, key)
        else:
            out = self.client.call(service, body, key)

        self.idempotency.claim(key, SCOPE_OUTBOUND)
        return out
