"""Concurrency and retry layer shared by every remote call.

All remote calls go through a [RemoteClient][aws_app.backoff.RemoteClient]:
calls to the same service are bounded by a semaphore (excess calls block in
line), and transient failures are retried by `tenacity` with exponential
backoff and jitter as described by a [RetryPolicy][aws_app.backoff.RetryPolicy].
"""

import random
import time
from threading import BoundedSemaphore, Lock
from typing import Any, Callable, Dict, Optional

import boto3
from botocore.config import Config as BotoConfig
from pydantic import BaseModel, ConfigDict, Field
from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
)

from .exceptions import (
    RemoteTransientError,
    RetriesExhaustedError,
    translate_error,
)
from .logger import logger

# the Pricing API is only served from a few regions
GLOBAL_SERVICE_REGIONS = {"pricing": "us-east-1", "iam": "us-east-1"}


def full_jitter(delay: float) -> float:
    """Random delay between zero and the exponential backoff delay."""
    return random.uniform(0, delay)


def no_jitter(delay: float) -> float:
    """Deterministic backoff, e.g. for tests.

    Examples:
        >>> no_jitter(1.5)
        1.5
    """
    return delay


class RetryPolicy(BaseModel):
    """Retry policy reused by all remote fetchers and the dispatcher.

    Examples:
        >>> policy = RetryPolicy(max_attempts=4, base_delay=1, max_delay=5, jitter=no_jitter)
        >>> [policy.delay(i) for i in range(1, 5)]
        [1.0, 2.0, 4.0, 5.0]
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    max_attempts: int = Field(default=5, ge=1)
    base_delay: float = Field(default=0.5, ge=0)
    max_delay: float = Field(default=20, ge=0)
    jitter: Callable[[float], float] = full_jitter

    def delay(self, attempt: int) -> float:
        """Seconds to sleep after the given (1-based) failed attempt."""
        delay = min(self.max_delay, self.base_delay * 2 ** (attempt - 1))
        return float(self.jitter(delay))

    def wait(self, retry_state: RetryCallState) -> float:
        """`tenacity` wait strategy."""
        return self.delay(retry_state.attempt_number)


def _log_retry(retry_state: RetryCallState):
    error = retry_state.outcome.exception()
    logger.warning(
        "Retrying %s.%s after attempt %d (sleeping %.2fs): %s",
        getattr(error, "service", "?"),
        getattr(error, "operation", "?"),
        retry_state.attempt_number,
        retry_state.next_action.sleep if retry_state.next_action else 0,
        error,
    )


class RemoteClient:
    """Bounded, retrying access to the AWS service APIs of a region.

    Args:
        region: AWS region name.
        policy: Retry policy applied to each call.
        max_concurrency: Max number of in-flight calls per service.
        call_timeout: Connect and read timeout of a single call in seconds.
        client_factory: Optional callable returning a client for a service name,
            defaults to `boto3` clients.
        sleep: Function used for sleeping between attempts.
    """

    def __init__(
        self,
        region: str,
        policy: Optional[RetryPolicy] = None,
        max_concurrency: int = 8,
        call_timeout: float = 30,
        client_factory: Optional[Callable[[str], Any]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.region = region
        self.policy = policy or RetryPolicy()
        self.max_concurrency = max_concurrency
        self.call_timeout = call_timeout
        self.client_factory = client_factory or self._boto_client
        self.sleep = sleep
        self._clients: Dict[str, Any] = {}
        self._semaphores: Dict[str, BoundedSemaphore] = {}
        self._lock = Lock()

    def _boto_client(self, service: str):
        config = BotoConfig(
            connect_timeout=self.call_timeout,
            read_timeout=self.call_timeout,
            # retries are handled by the RetryPolicy
            retries={"max_attempts": 1, "mode": "standard"},
        )
        # boto3 sessions are not thread-safe, clients are
        session = boto3.session.Session()
        return session.client(
            service,
            region_name=GLOBAL_SERVICE_REGIONS.get(service, self.region),
            config=config,
        )

    def client(self, service: str):
        """Cached client of a service."""
        with self._lock:
            if service not in self._clients:
                self._clients[service] = self.client_factory(service)
            return self._clients[service]

    def semaphore(self, service: str) -> BoundedSemaphore:
        with self._lock:
            if service not in self._semaphores:
                self._semaphores[service] = BoundedSemaphore(self.max_concurrency)
            return self._semaphores[service]

    def run(self, service: str, operation: str, fn: Callable[[Any], Any]) -> Any:
        """Run a callable on the service's client under the concurrency and retry policy.

        Args:
            service: AWS service name, e.g. `ec2`.
            operation: Name of the operation, used in errors and logs.
            fn: Callable receiving the service client.

        Raises:
            RetriesExhaustedError: Transient failures persisted after all attempts.
            RemotePermanentError: The remote API rejected the request.
        """
        client = self.client(service)
        semaphore = self.semaphore(service)
        retrying = Retrying(
            retry=retry_if_exception_type(RemoteTransientError),
            stop=stop_after_attempt(self.policy.max_attempts),
            wait=self.policy.wait,
            sleep=self.sleep,
            before_sleep=_log_retry,
        )
        try:
            for attempt in retrying:
                with attempt:
                    with semaphore:
                        try:
                            return fn(client)
                        except Exception as e:
                            translated = translate_error(e, service, operation)
                            if translated is e:
                                raise
                            raise translated from e
        except RetryError as e:
            last_error = e.last_attempt.exception()
            raise RetriesExhaustedError(
                last_error, e.last_attempt.attempt_number
            ) from last_error

    def call(self, service: str, operation: str, **kwargs) -> dict:
        """Call a single operation of the service's client, e.g. `call("ec2", "describe_volumes")`."""
        logger.debug("Calling %s.%s", service, operation)
        return self.run(
            service, operation, lambda client: getattr(client, operation)(**kwargs)
        )

    def paginate(self, service: str, operation: str, **kwargs) -> dict:
        """Fetch and merge all pages of a paginated operation."""
        logger.debug("Paginating %s.%s", service, operation)
        return self.run(
            service,
            operation,
            lambda client: client.get_paginator(operation)
            .paginate(**kwargs)
            .build_full_result(),
        )
