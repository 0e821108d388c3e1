"""Unit tests for the concurrency and retry layer."""

import random
import threading
import time
from unittest.mock import call

import pytest
from botocore.exceptions import EndpointConnectionError, ReadTimeoutError

from aws_app.backoff import GLOBAL_SERVICE_REGIONS, RetryPolicy, full_jitter, no_jitter
from aws_app.exceptions import (
    RemoteNotFoundError,
    RemotePermanentError,
    RemoteTransientError,
    RetriesExhaustedError,
)


class TestRetryPolicy:
    """Tests for the exponential backoff delays."""

    def test_delays_are_capped(self):
        policy = RetryPolicy(
            max_attempts=6, base_delay=0.5, max_delay=3, jitter=no_jitter
        )
        assert [policy.delay(i) for i in range(1, 6)] == [0.5, 1.0, 2.0, 3.0, 3.0]

    def test_full_jitter_stays_within_the_delay(self):
        random.seed(42)
        policy = RetryPolicy(base_delay=1, max_delay=8, jitter=full_jitter)
        for attempt in range(1, 6):
            delay = policy.delay(attempt)
            assert 0 <= delay <= min(8, 2 ** (attempt - 1))

    def test_invalid_policy(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


class TestRetries:
    """Tests for retrying transient failures."""

    def test_throttling_then_success(self, remote, aws, sleep, make_client_error):
        mock = aws.respond(
            "ec2",
            "describe_volumes",
            make_client_error("RequestLimitExceeded"),
            make_client_error("Throttling"),
            {"Volumes": []},
        )
        assert remote.call("ec2", "describe_volumes") == {"Volumes": []}
        assert mock.call_count == 3
        assert sleep.call_args_list == [call(1.0), call(2.0)]

    def test_retries_exhausted(self, remote, aws, sleep, make_client_error):
        aws.respond(
            "ec2",
            "describe_volumes",
            *[make_client_error("Throttling") for _ in range(3)],
        )
        with pytest.raises(RetriesExhaustedError) as excinfo:
            remote.call("ec2", "describe_volumes")
        assert excinfo.value.attempts == 3
        assert excinfo.value.code == "Throttling"
        assert excinfo.value.service == "ec2"
        assert isinstance(excinfo.value, RemoteTransientError)
        assert sleep.call_count == 2

    def test_timeouts_are_transient(self, remote, aws, sleep):
        mock = aws.respond(
            "ec2",
            "describe_key_pairs",
            ReadTimeoutError(endpoint_url="https://ec2.eu-west-1.amazonaws.com"),
            EndpointConnectionError(endpoint_url="https://ec2.eu-west-1.amazonaws.com"),
            {"KeyPairs": []},
        )
        assert remote.call("ec2", "describe_key_pairs") == {"KeyPairs": []}
        assert mock.call_count == 3

    def test_permanent_error_not_retried(self, remote, aws, sleep, make_client_error):
        mock = aws.respond(
            "ec2", "describe_volumes", make_client_error("UnauthorizedOperation")
        )
        with pytest.raises(RemotePermanentError) as excinfo:
            remote.call("ec2", "describe_volumes")
        assert excinfo.value.code == "UnauthorizedOperation"
        assert not isinstance(excinfo.value, RemoteNotFoundError)
        assert mock.call_count == 1
        sleep.assert_not_called()

    def test_not_found(self, remote, aws, sleep, make_client_error):
        aws.respond(
            "ec2", "delete_volume", make_client_error("InvalidVolume.NotFound")
        )
        with pytest.raises(RemoteNotFoundError):
            remote.call("ec2", "delete_volume", VolumeId="vol-1")
        sleep.assert_not_called()

    def test_other_exceptions_propagate_unchanged(self, remote, sleep):
        def broken(client):
            raise KeyError("Volumes")

        with pytest.raises(KeyError):
            remote.run("ec2", "describe_volumes", broken)
        sleep.assert_not_called()

    def test_paginate_passes_arguments(self, remote, aws):
        mock = aws.respond("ecr", "describe_images", {"imageDetails": []})
        remote.paginate("ecr", "describe_images", repositoryName="app")
        mock.assert_called_once_with(repositoryName="app")


class TestConcurrency:
    """Tests for the per-service concurrency limit."""

    def test_in_flight_calls_are_bounded(self, remote):
        in_flight = []
        peak = []
        lock = threading.Lock()

        def slow(client):
            with lock:
                in_flight.append(1)
                peak.append(len(in_flight))
            time.sleep(0.05)
            with lock:
                in_flight.pop()
            return True

        threads = [
            threading.Thread(target=remote.run, args=("ec2", "describe_volumes", slow))
            for _ in range(6)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert len(peak) == 6
        assert max(peak) <= remote.max_concurrency

    def test_semaphores_per_service(self, remote):
        assert remote.semaphore("ec2") is remote.semaphore("ec2")
        assert remote.semaphore("ec2") is not remote.semaphore("s3")

    def test_clients_are_reused(self, remote, aws):
        assert remote.client("ec2") is remote.client("ec2")
        assert list(aws.clients) == ["ec2"]


def test_global_services_use_us_east_1():
    assert GLOBAL_SERVICE_REGIONS["pricing"] == "us-east-1"
