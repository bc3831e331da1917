import pytest
import requests
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.exc import IntegrityError, OperationalError

from taskguard.services.error_taxonomy import (
    ApplicationError,
    BusinessRuleError,
    CircuitOpenError,
    ErrorLayer,
    InfrastructureError,
    InvalidPayloadError,
    SagaConcurrencyError,
    classify,
    is_dependency_failure,
    should_retry,
)


def test_business_errors_never_retry_even_if_flagged():
    exc = BusinessRuleError("insufficient stock", retryable=True)
    assert classify(exc) == ErrorLayer.BUSINESS
    assert should_retry(exc) is False


def test_application_errors_follow_their_flag():
    assert should_retry(ApplicationError("bad mapping")) is False
    assert should_retry(ApplicationError("lock busy", retryable=True)) is True
    assert should_retry(InvalidPayloadError("not a dict")) is False
    assert should_retry(SagaConcurrencyError("held elsewhere")) is True


def test_infrastructure_errors_retry_unless_flagged_off():
    assert should_retry(InfrastructureError("timeout")) is True
    assert should_retry(InfrastructureError("bad credentials", retryable=False)) is False
    assert should_retry(CircuitOpenError("payments")) is True


@pytest.mark.parametrize("exc", [
    ConnectionError("refused"),
    TimeoutError("slow"),
    OperationalError("SELECT 1", {}, Exception("server closed the connection")),
    RedisConnectionError("redis down"),
    requests.ConnectionError("dns"),
    RuntimeError("something odd"),
])
def test_untagged_transient_errors_are_infrastructure(exc):
    assert classify(exc) == ErrorLayer.INFRASTRUCTURE
    assert should_retry(exc) is True


@pytest.mark.parametrize("exc", [
    ValueError("bad"),
    KeyError("missing"),
    TypeError("wrong"),
    IntegrityError("INSERT", {}, Exception("duplicate key")),
])
def test_untagged_programming_errors_are_application(exc):
    assert classify(exc) == ErrorLayer.APPLICATION
    assert should_retry(exc) is False


def test_third_party_exception_can_declare_its_layer():
    class PaymentDeclined(Exception):
        layer = "business"

    assert classify(PaymentDeclined()) == ErrorLayer.BUSINESS
    assert should_retry(PaymentDeclined()) is False


def test_only_retryable_infrastructure_failures_count_against_a_circuit():
    assert is_dependency_failure(InfrastructureError("503")) is True
    assert is_dependency_failure(ConnectionError("refused")) is True
    assert is_dependency_failure(InfrastructureError("401", retryable=False)) is False
    assert is_dependency_failure(BusinessRuleError("declined")) is False
    assert is_dependency_failure(ValueError("bug")) is False
    assert is_dependency_failure(CircuitOpenError("payments")) is False
