from taskguard.jobs.saga_job import SagaJobExecutor, saga_definitions
from taskguard.models.enums import DeadLetterReason, JobOutcome, SagaStatus
from taskguard.services.error_taxonomy import InfrastructureError
from taskguard.services.saga_orchestrator import SagaStep


def _run(services, host, args):
    services.scheduler.schedule("saga", args)
    return SagaJobExecutor.from_services(services).execute(host.submitted[-1]["payload"])


def test_registered_saga_runs_to_completion(services, host, mocker):
    mocker.patch.dict(saga_definitions, {
        "signup": lambda context, executor: [SagaStep("account", lambda ctx: {"user": ctx["email"]})],
    })

    outcome = _run(services, host, {"saga_id": "s-1", "saga_type": "signup", "context": {"email": "a@b.c"}})

    assert outcome == JobOutcome.OK.value
    record = services.sagas.get("s-1")
    assert record.state == SagaStatus.COMPLETED
    assert record.context["step_results"]["account"] == {"user": "a@b.c"}


def test_unknown_saga_type_is_dead_lettered(services, host):
    outcome = _run(services, host, {"saga_id": "s-2", "saga_type": "missing"})

    assert outcome == JobOutcome.DEAD_LETTERED.value
    assert services.dead_letters.get_pending()[0].hook == "saga"


def test_clean_rollback_finishes_the_job(services, host, mocker):
    def fail(ctx):
        raise InfrastructureError("nope", retryable=False)

    mocker.patch.dict(saga_definitions, {
        "signup": lambda context, executor: [SagaStep("a", lambda ctx: 1, lambda ctx: None), SagaStep("b", fail)],
    })

    assert _run(services, host, {"saga_id": "s-3", "saga_type": "signup"}) == JobOutcome.OK.value
    assert services.sagas.get("s-3").state == SagaStatus.FAILED


def test_failed_compensation_is_dead_lettered(services, host, mocker):
    def fail(ctx):
        raise ValueError("bad input")

    def broken_undo(ctx):
        raise RuntimeError("undo failed")

    mocker.patch.dict(saga_definitions, {
        "signup": lambda context, executor: [SagaStep("a", lambda ctx: 1, broken_undo), SagaStep("b", fail)],
    })

    assert _run(services, host, {"saga_id": "s-4", "saga_type": "signup"}) == JobOutcome.DEAD_LETTERED.value
    entry = services.dead_letters.get_pending()[0]
    assert entry.reason == DeadLetterReason.EXCEPTION
    assert entry.meta["error_code"] == "SAGA_COMPENSATION_FAILED"


def test_locked_saga_is_retried(services, host):
    services.sagas.repo.create_if_absent("s-5", "http_chain", {})
    services.sagas.repo.acquire_lease("s-5", "other-worker", 300)

    assert _run(services, host, {"saga_id": "s-5", "saga_type": "http_chain"}) == JobOutcome.RETRY_SCHEDULED.value


def test_http_chain_calls_services_with_step_keys(services, host):
    calls = []

    def call(service, body, key):
        calls.append((service, key))
        if service == "payments":
            raise InfrastructureError("declined", retryable=False)
        return {"ok": True}

    services.http_client.call.side_effect = call
    context = {"steps": [
        {"name": "reserve", "service": "catalog", "body": {"sku": "x"},
         "compensate": {"service": "catalog", "body": {"release": "x"}}},
        {"name": "charge", "service": "payments", "body": {"amount": 5}},
    ]}

    assert _run(services, host, {"saga_id": "s-6", "saga_type": "http_chain", "context": context}) == "OK"
    assert calls == [
        ("catalog", "s-6:reserve"),
        ("payments", "s-6:charge"),
        ("catalog", "s-6:reserve:compensate"),
    ]
    assert services.sagas.get("s-6").state == SagaStatus.FAILED
