from taskguard.jobs.outbound import SCOPE_OUTBOUND, OutboundCallExecutor
from taskguard.models.enums import DeadLetterReason, JobOutcome
from taskguard.services.http_service_client import ServiceCallError, ServiceRejectedError


def _executor(services):
    return OutboundCallExecutor.from_services(services)


def test_delivers_through_client_and_claims_key(services, host):
    services.http_client.call.return_value = {"ok": True}
    services.scheduler.schedule("outbound_call", {"service": "messaging", "body": {"to": "+1"},
                                                  "idempotency_key": "msg-1"})

    assert _executor(services).execute(host.submitted[-1]["payload"]) == JobOutcome.OK.value
    services.http_client.call.assert_called_once_with("messaging", {"to": "+1"}, "msg-1")
    assert services.idempotency.is_claimed("msg-1", SCOPE_OUTBOUND)


def test_redelivery_skips_the_call(services, host):
    services.http_client.call.return_value = {"ok": True}
    services.scheduler.schedule("outbound_call", {"service": "messaging", "body": {"to": "+1"}})
    payload = host.submitted[-1]["payload"]
    executor = _executor(services)

    executor.execute(payload)
    executor.execute(payload)
    assert services.http_client.call.call_count == 1


def test_unknown_service_is_dead_lettered(services, host):
    services.scheduler.schedule("outbound_call", {"service": "nope", "body": {}})

    assert _executor(services).execute(host.submitted[-1]["payload"]) == JobOutcome.DEAD_LETTERED.value
    services.http_client.call.assert_not_called()
    assert services.dead_letters.get_pending()[0].reason == DeadLetterReason.EXCEPTION


def test_transient_failure_is_retried_and_counted_by_breaker(services, host):
    services.http_client.call.side_effect = ServiceCallError("SERVICE_TIMEOUT", "timeout", True)
    services.scheduler.schedule("outbound_call", {"service": "payments", "body": {}})

    assert _executor(services).execute(host.submitted[-1]["payload"]) == JobOutcome.RETRY_SCHEDULED.value
    assert services.breaker.metrics("payments")["failures"] == 1


def test_rejection_is_not_retried(services, host):
    services.http_client.call.side_effect = ServiceRejectedError("CARD_DECLINED", "declined")
    services.scheduler.schedule("outbound_call", {"service": "payments", "body": {}})

    assert _executor(services).execute(host.submitted[-1]["payload"]) == JobOutcome.DEAD_LETTERED.value
    assert services.breaker.metrics("payments")["failures"] == 0
    assert services.dead_letters.get_pending()[0].meta["error_code"] == "CARD_DECLINED"
