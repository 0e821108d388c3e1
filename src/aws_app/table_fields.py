"""Enumerations and other helper classes used in [aws_app.tables][] and beyond."""

from enum import Enum


class PriceType(str, Enum):
    """Pricing model of an instance type price observation."""

    ONDEMAND = "ondemand"
    """Standard hourly on-demand price."""
    RESERVED = "reserved"
    """Effective hourly price of a 1 year, all upfront, standard reservation."""
    SPOT = "spot"
    """Current spot market price of the cheapest availability zone."""


class Generation(str, Enum):
    """Virtualization generation of an instance type."""

    HVM = "hvm"
    """Hardware virtual machine, current generation types."""
    PV = "pv"
    """Paravirtual, previous generation types."""


class SyncKind(str, Enum):
    """Cached data sets that can be reconciled with the remote APIs."""

    INSTANCE_TYPES = "instance_types"
    """Instance families and instance types, synced together."""
    ONDEMAND_PRICES = "ondemand_prices"
    """On-demand price observations."""
    RESERVED_PRICES = "reserved_prices"
    """Reserved price observations."""
    SPOT_PRICES = "spot_prices"
    """Spot price observations."""


class ResourceKind(str, Enum):
    """The closed set of resource kinds that can be listed."""

    INSTANCES = "instances"
    RESERVED = "reserved"
    SPOT = "spot"
    AMI = "ami"
    VOLUME = "volume"
    SNAPSHOT = "snapshot"
    ECR = "ecr"
    KEY = "key"
    SCRIPT = "script"
    USER = "user"
    GROUP = "group"
    ACCESS_KEY = "access-key"
    ROUTE53 = "route53"
    SYSTEMD = "systemd"
    EMAIL = "email"
    INSTANCE_FAMILY = "instance-family"
    INSTANCE_TYPE = "instance-type"
    PRICE = "price"

    @property
    def is_cached(self) -> bool:
        """True if the kind is served from the Cache Store."""
        return self in CACHED_KINDS

    @classmethod
    def parse(cls, value: str) -> "ResourceKind":
        """Look up a kind by its value, also accepting a few aliases.

        Examples:
            >>> ResourceKind.parse("dns")
            <ResourceKind.ROUTE53: 'route53'>
            >>> ResourceKind.parse("access_key")
            <ResourceKind.ACCESS_KEY: 'access-key'>
        """
        value = value.strip().lower()
        value = {"dns": "route53", "access_key": "access-key"}.get(value, value)
        return cls(value)


CACHED_KINDS = frozenset(
    [ResourceKind.INSTANCE_FAMILY, ResourceKind.INSTANCE_TYPE, ResourceKind.PRICE]
)


class Action(str, Enum):
    """Mutating actions that can be dispatched against the remote APIs."""

    TERMINATE_INSTANCE = "terminate-instance"
    RUN_INSTANCE = "run-instance"
    CREATE_IMAGE = "create-image"
    TAG_RESOURCE = "tag-resource"
    REQUEST_SPOT = "request-spot"
    CANCEL_SPOT = "cancel-spot"
    DELETE_IMAGE = "delete-image"
    CREATE_VOLUME = "create-volume"
    DELETE_VOLUME = "delete-volume"
    ATTACH_VOLUME = "attach-volume"
    DETACH_VOLUME = "detach-volume"
    MODIFY_VOLUME = "modify-volume"
    CREATE_SNAPSHOT = "create-snapshot"
    DELETE_SNAPSHOT = "delete-snapshot"
    DELETE_ECR_IMAGE = "delete-ecr-image"
    CLEANUP_ECR_IMAGES = "cleanup-ecr-images"
    CREATE_USER = "create-user"
    DELETE_USER = "delete-user"
    ADD_USER_TO_GROUP = "add-user-to-group"
    REMOVE_USER_FROM_GROUP = "remove-user-from-group"
    CREATE_ACCESS_KEY = "create-access-key"
    DELETE_ACCESS_KEY = "delete-access-key"
    UPSERT_DNS_RECORD = "upsert-dns-record"
    WRITE_SCRIPT = "write-script"
    DELETE_SCRIPT = "delete-script"
    START_SERVICE = "start-service"
    STOP_SERVICE = "stop-service"
    RESTART_SERVICE = "restart-service"
    DELETE_EMAIL = "delete-email"


class ActionStatus(str, Enum):
    """Outcome of a dispatched action."""

    SUCCESS = "success"
    """The remote API accepted the mutation."""
    NOT_FOUND_TREATED_AS_SUCCESS = "not-found-treated-as-success"
    """Destructive action against an already missing resource."""
