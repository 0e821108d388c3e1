"""Shared fixtures: a temporary Cache Store and fake AWS clients."""

import json
from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError

from aws_app.backoff import RemoteClient, RetryPolicy, no_jitter
from aws_app.config import Config
from aws_app.context import AppContext


class FakeClient:
    """Stand-in for a boto3 client answering from canned responses.

    Each operation is a `Mock`, failing loudly until configured via
    [FakeAws.respond][]. Paginators call the same operation mock.
    """

    def __init__(self, service):
        self.service = service
        self.operations = {}

    def __getattr__(self, operation):
        if operation.startswith("_"):
            raise AttributeError(operation)
        if operation not in self.operations:
            self.operations[operation] = Mock(
                name=f"{self.service}.{operation}",
                side_effect=RuntimeError(
                    f"Unmocked AWS call: {self.service}.{operation}"
                ),
            )
        return self.operations[operation]

    def get_paginator(self, operation):
        call = getattr(self, operation)
        paginator = Mock()
        paginator.paginate.side_effect = lambda **kwargs: Mock(
            build_full_result=lambda: call(**kwargs)
        )
        return paginator


class FakeAws:
    """Client factory of [RemoteClient][aws_app.backoff.RemoteClient] returning fake clients."""

    def __init__(self):
        self.clients = {}

    def __call__(self, service):
        return self.client(service)

    def client(self, service) -> FakeClient:
        return self.clients.setdefault(service, FakeClient(service))

    def respond(self, service, operation, *responses):
        """Configure the responses of an operation.

        A single response is returned on every call, while several
        responses (or exceptions) are used one after the other.
        """
        mock = getattr(self.client(service), operation)
        mock.side_effect = None
        if len(responses) == 1 and not isinstance(responses[0], Exception):
            mock.return_value = responses[0]
        else:
            mock.side_effect = list(responses)
        return mock


def client_error(code, operation="Operation", message="boom"):
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


@pytest.fixture
def make_client_error():
    return client_error


@pytest.fixture
def aws():
    return FakeAws()


@pytest.fixture
def sleep():
    return Mock()


@pytest.fixture
def config(tmp_path):
    return Config(
        database_url=f"sqlite:///{tmp_path / 'cache.db'}",
        aws_region_name="eu-west-1",
        my_owner_id="123456789012",
        max_spot_price=0.2,
        script_directory=tmp_path / "scripts",
        systemd_services=["nginx"],
        email_bucket="mails",
        max_concurrency=2,
        max_attempts=3,
        base_delay=1,
        max_delay=4,
        sync_timeout=60,
    )


@pytest.fixture
def remote(aws, sleep):
    policy = RetryPolicy(max_attempts=3, base_delay=1, max_delay=4, jitter=no_jitter)
    return RemoteClient(
        region="eu-west-1",
        policy=policy,
        max_concurrency=2,
        client_factory=aws,
        sleep=sleep,
    )


@pytest.fixture
def ctx(config, remote):
    """Application context with a fresh SQLite Cache Store and fake AWS clients."""
    context = AppContext.from_config(config, remote=remote)
    yield context
    context.close()


def instance_type(name, n_cpu=2, memory_mib=8192, virtualization=("hvm",)):
    return {
        "InstanceType": name,
        "VCpuInfo": {"DefaultVCpus": n_cpu},
        "MemoryInfo": {"SizeInMiB": memory_mib},
        "SupportedVirtualizationTypes": list(virtualization),
    }


def ondemand_product(name, price):
    return json.dumps(
        {
            "product": {"attributes": {"instanceType": name}},
            "terms": {
                "OnDemand": {
                    "term": {
                        "priceDimensions": {
                            "dim": {"unit": "Hrs", "pricePerUnit": {"USD": str(price)}}
                        }
                    }
                }
            },
        }
    )


@pytest.fixture
def make_instance_type():
    return instance_type


@pytest.fixture
def make_ondemand_product():
    return ondemand_product
