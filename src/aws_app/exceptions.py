"""Error taxonomy shared by the Reconciler, Dispatcher and Aggregator."""

from typing import Any, Dict, Optional

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

THROTTLING_CODES = {
    "Throttling",
    "ThrottlingException",
    "ThrottledException",
    "RequestThrottled",
    "RequestThrottledException",
    "RequestLimitExceeded",
    "TooManyRequestsException",
    "RateExceeded",
    "SlowDown",
    "PriorRequestNotComplete",
    "ProvisionedThroughputExceededException",
    "EC2ThrottledException",
    "RequestTimeout",
    "RequestTimeoutException",
    "ServiceUnavailable",
    "InternalError",
}
"""Error codes of AWS APIs that are worth retrying with backoff."""

NOT_FOUND_CODES = {
    "InvalidInstanceID.NotFound",
    "InvalidAMIID.NotFound",
    "InvalidAMIID.Unavailable",
    "InvalidVolume.NotFound",
    "InvalidSnapshot.NotFound",
    "InvalidSpotInstanceRequestID.NotFound",
    "InvalidKeyPair.NotFound",
    "NoSuchEntity",
    "NoSuchKey",
    "NoSuchBucket",
    "NoSuchHostedZone",
    "ImageNotFoundException",
    "RepositoryNotFoundException",
    "ResourceNotFoundException",
    "NotFoundException",
}
"""Error codes of AWS APIs meaning the referenced resource does not exist."""

TRANSIENT_EXCEPTIONS = (
    ConnectTimeoutError,
    ReadTimeoutError,
    EndpointConnectionError,
    ConnectionClosedError,
)


class AppError(Exception):
    """Base class of all errors raised by `aws_app`.

    Args:
        message: Human-friendly description of the problem.
        context: Optional details, e.g. the action name and target id.
    """

    def __init__(self, message: str = "", context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})

    def with_context(self, **kwargs) -> "AppError":
        """Attach extra details to the error and return it for re-raising."""
        self.context.update(kwargs)
        return self

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} [{details}]"


class RemoteError(AppError):
    """Failed call of a remote (AWS or local system) API."""

    def __init__(
        self,
        service: str,
        operation: str,
        code: str = "",
        message: str = "",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.service = service
        self.operation = operation
        self.code = code
        super().__init__(
            f"{service}.{operation} failed: {code or 'Error'} {message}".strip(),
            context,
        )


class RemoteTransientError(RemoteError):
    """Throttled or timed out remote call, retried by the backoff layer."""


class RetriesExhaustedError(RemoteTransientError):
    """Transient remote failure that persisted after all retry attempts."""

    def __init__(self, last_error: RemoteTransientError, attempts: int):
        self.attempts = attempts
        super().__init__(
            last_error.service,
            last_error.operation,
            last_error.code,
            f"(gave up after {attempts} attempts)",
            last_error.context,
        )


class RemotePermanentError(RemoteError):
    """Remote API rejected the request, e.g. bad parameters or access denied."""


class RemoteNotFoundError(RemotePermanentError):
    """Remote API reported the referenced resource as missing."""


class CacheIOError(AppError):
    """Cache Store transaction failed and was rolled back."""


class ValidationError(AppError):
    """Malformed input caught before any remote call."""


class RegistryError(AppError):
    """Resource kind or action registration is incomplete or inconsistent."""


def get_error_code(error: Exception) -> str:
    """Extract the AWS error code from a botocore ClientError."""
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Code", "")
    return ""


def translate_error(error: Exception, service: str, operation: str) -> Exception:
    """Map botocore exceptions to the `aws_app` error taxonomy.

    Exceptions not raised by botocore are returned unchanged.
    """
    if isinstance(error, TRANSIENT_EXCEPTIONS):
        return RemoteTransientError(
            service, operation, type(error).__name__, str(error)
        )
    if isinstance(error, ClientError):
        code = get_error_code(error)
        message = error.response.get("Error", {}).get("Message", "")
        if code in THROTTLING_CODES:
            return RemoteTransientError(service, operation, code, message)
        if code in NOT_FOUND_CODES or code.endswith(".NotFound"):
            return RemoteNotFoundError(service, operation, code, message)
        return RemotePermanentError(service, operation, code, message)
    if isinstance(error, BotoCoreError):
        return RemotePermanentError(
            service, operation, type(error).__name__, str(error)
        )
    return error
