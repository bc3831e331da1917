"""
Error classification for job execution.

Every failure a job raises lands in one of three layers:

* business       - a domain rule was violated; never retried.
* application    - our own code or input is wrong; retried only when the
                   exception says it is retryable.
* infrastructure - the store, the broker or a remote dependency misbehaved;
                   retried unless the exception says otherwise.

Exceptions declare their layer through a ``layer`` attribute, so third-party
exception types can be tagged without inheriting from ``JobError``. Untagged
exceptions are classified by type.
"""
from enum import Enum
from typing import Optional

import requests
from redis.exceptions import RedisError
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError


class ErrorLayer(str, Enum):
    BUSINESS = "business"
    APPLICATION = "application"
    INFRASTRUCTURE = "infrastructure"


class JobError(RuntimeError):
    layer: ErrorLayer = ErrorLayer.APPLICATION
    default_retryable: bool = False

    def __init__(self, message: str, code: Optional[str] = None, retryable: Optional[bool] = None,
                 details: Optional[dict] = None):
        super().__init__(message)
        self.code = code or type(self).__name__
        self.retryable = self.default_retryable if retryable is None else retryable
        self.details = details

    def is_retryable(self) -> bool:
        return self.retryable


class BusinessRuleError(JobError):
    layer = ErrorLayer.BUSINESS

    def is_retryable(self) -> bool:
        return False


class ApplicationError(JobError):
    layer = ErrorLayer.APPLICATION


class InfrastructureError(JobError):
    layer = ErrorLayer.INFRASTRUCTURE
    default_retryable = True


class InvalidPayloadError(ApplicationError):
    pass


class CircuitOpenError(InfrastructureError):
    def __init__(self, dependency: str):
        super().__init__(f"Circuit for '{dependency}' is open", code="CIRCUIT_OPEN")
        self.dependency = dependency


class SagaConcurrencyError(ApplicationError):
    default_retryable = True


_INFRASTRUCTURE_TYPES = (
    ConnectionError,
    TimeoutError,
    OSError,
    OperationalError,
    InterfaceError,
    PoolTimeoutError,
    RedisError,
    requests.RequestException,
)

_APPLICATION_TYPES = (
    ValueError,
    TypeError,
    LookupError,
    AttributeError,
    IntegrityError,
)


def classify(exc: BaseException) -> ErrorLayer:
    layer = getattr(exc, "layer", None)
    if layer is not None:
        return ErrorLayer(layer)
    if isinstance(exc, _INFRASTRUCTURE_TYPES):
        return ErrorLayer.INFRASTRUCTURE
    if isinstance(exc, _APPLICATION_TYPES):
        return ErrorLayer.APPLICATION
    # unknown failures are treated as transient
    return ErrorLayer.INFRASTRUCTURE


def is_retryable(exc: BaseException) -> bool:
    layer = classify(exc)
    if layer == ErrorLayer.BUSINESS:
        return False

    checker = getattr(exc, "is_retryable", None)
    if callable(checker):
        return bool(checker())
    declared = getattr(exc, "retryable", None)
    if declared is not None:
        return bool(declared)

    return layer == ErrorLayer.INFRASTRUCTURE


def should_retry(exc: BaseException) -> bool:
    """Default retry decision used by JobExecutor."""
    return is_retryable(exc)


def is_dependency_failure(exc: BaseException) -> bool:
    """Only retryable infrastructure failures count against a circuit."""
    if isinstance(exc, CircuitOpenError):
        return False
    return classify(exc) == ErrorLayer.INFRASTRUCTURE and is_retryable(exc)


def describe(exc: BaseException) -> dict:
    return {
        "error": str(exc) or type(exc).__name__,
        "error_type": type(exc).__name__,
        "error_code": getattr(exc, "code", None),
        "layer": classify(exc).value,
        "retryable": is_retryable(exc),
    }
