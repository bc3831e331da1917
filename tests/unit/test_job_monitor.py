import time

import pytest

from taskguard.models.dead_letter import DeadLetterEntry
from taskguard.models.enums import DeadLetterReason
from taskguard.models.saga_record import SagaRecord
from taskguard.services.job_monitor import JobMonitor


def _monitor(services, **thresholds):
    return JobMonitor(services.dead_letters, services.breaker, services.sagas, thresholds=thresholds)


def test_stalled_saga_raises_an_alert(services, session):
    services.sagas.repo.create_if_absent("stuck", "order", {})
    record = session.get(SagaRecord, "stuck")
    record.updated_at = time.time() - 3600
    session.add(record)
    session.commit()

    health = _monitor(services).health_status()

    assert health["status"] == "warning"
    assert health["sagas"]["stalled"] == 1
    assert health["alerts"] == ["1 saga(s) have stopped progressing (threshold: 0)"]


def test_throughput_counts_recent_dead_letters_only(services, session):
    recent = services.dead_letters.add("a", {}, DeadLetterReason.EXCEPTION, "x")
    old = services.dead_letters.add("a", {}, DeadLetterReason.EXCEPTION, "x")
    entry = session.get(DeadLetterEntry, old)
    entry.created_at = time.time() - 2 * 3600
    session.add(entry)
    session.commit()

    assert recent != old
    assert _monitor(services).throughput() == {"dead_lettered_last_hour": 1, "dead_lettered_last_day": 2}


def test_failure_rate_threshold(services):
    for _ in range(3):
        services.dead_letters.add("a", {}, DeadLetterReason.MAX_RETRIES, "x")

    health = _monitor(services, dead_lettered_per_hour=2).health_status()

    assert health["thresholds"]["dead_lettered_per_hour"] == 2
    assert health["alerts"] == [
        "High failure rate: 3 jobs dead-lettered in the last hour (threshold: 2)",
    ]


def test_half_open_circuits_count_as_not_closed(services, mocker):
    mocker.patch.object(services.breaker, "all_metrics", return_value=[
        {"name": "payments", "state": "HALF_OPEN"},
        {"name": "catalog", "state": "CLOSED"},
    ])
    assert [c["name"] for c in _monitor(services).open_circuits()] == ["payments"]


def test_unknown_threshold_is_rejected(services):
    monitor = _monitor(services)
    with pytest.raises(ValueError):
        monitor.set_threshold("pending_total", 10)
    with pytest.raises(ValueError):
        _monitor(services, nonsense=1)
