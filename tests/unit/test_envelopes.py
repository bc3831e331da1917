import json

import pytest

from taskguard.models.enums import Priority
from taskguard.schemas.envelopes import JobMeta, unwrap, wrap
from taskguard.services.error_taxonomy import InvalidPayloadError


def test_wrap_then_unwrap_preserves_args_priority_and_attempt():
    args = {"order_id": 42, "items": [{"sku": "A-1", "qty": 2}]}
    payload = wrap(args, priority=Priority.URGENT, attempt=3).to_payload()

    assert payload["_version"] == 2
    assert payload["_meta"]["priority"] == 2

    out_args, meta = unwrap(payload)
    assert out_args == args
    assert meta.priority == Priority.URGENT
    assert meta.attempt == 3


def test_legacy_payload_becomes_args_with_default_meta():
    legacy = {"phone": "+15550100", "text": "hello"}

    args, meta = unwrap(legacy)

    assert args == legacy
    assert meta.priority == Priority.NORMAL
    assert meta.attempt == 1
    assert meta.scheduled_at > 0


def test_legacy_inline_meta_is_stripped_from_args():
    legacy = {"order_id": 1, "_job_meta": {"attempt": 2, "priority": 1, "job_id": "j-9"}}

    args, meta = unwrap(legacy)

    assert args == {"order_id": 1}
    assert meta.attempt == 2
    assert meta.priority == Priority.CRITICAL
    assert meta.job_id == "j-9"
    assert "_job_meta" in legacy


def test_unknown_envelope_version_is_treated_as_legacy():
    payload = {"_version": 99, "_meta": {"attempt": 5}, "args": {"a": 1}}

    args, meta = unwrap(payload)

    assert args == payload
    assert meta.attempt == 1


def test_priority_is_clamped_into_range():
    assert wrap({}, priority=0).meta.priority == Priority.CRITICAL
    assert wrap({}, priority=42).meta.priority == Priority.MAINTENANCE
    assert JobMeta(priority="junk").priority == Priority.NORMAL


@pytest.mark.parametrize("args", [["a", "b"], "text", 7, None])
def test_wrap_rejects_non_object_args(args):
    with pytest.raises(InvalidPayloadError):
        wrap(args)


def test_wrap_rejects_unserializable_args():
    with pytest.raises(InvalidPayloadError):
        wrap({"when": object()})


@pytest.mark.parametrize("payload", [
    ["not", "an", "object"],
    "not json",
    {"_version": 2, "_meta": {"attempt": 0}, "args": {}},
    {"_version": 2, "_meta": {}, "args": ["x"]},
    {"_version": 2, "_meta": None, "args": {}},
    {"order_id": 1, "_job_meta": {"attempt": -1}},
])
def test_unwrap_rejects_malformed_payloads(payload):
    with pytest.raises(InvalidPayloadError):
        unwrap(payload)


def test_unwrap_accepts_json_string():
    payload = wrap({"a": 1}, attempt=2).to_payload()
    args, meta = unwrap(json.dumps(payload))
    assert args == {"a": 1}
    assert meta.attempt == 2


def test_recurring_meta_survives_round_trip():
    payload = wrap({"feed": "catalog"}, recurring=True, interval=600, recurrence_id="r-1", occurrence=3).to_payload()
    _, meta = unwrap(payload)
    assert meta.recurring is True
    assert meta.interval == 600
    assert meta.recurrence_id == "r-1"
    assert meta.occurrence == 3
