"""Registry binding each resource kind to its fetch, render and action capabilities.

Every member of [ResourceKind][aws_app.table_fields.ResourceKind] must be
registered with all three capabilities, otherwise importing this module
fails with a [RegistryError][aws_app.exceptions.RegistryError].
"""

from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Optional,
)

from . import queries
from .exceptions import RegistryError
from .schemas import PriceRow, ResourceDescriptor
from .services import ecr, ec2, iam, local, route53, s3
from .str_utils import contains
from .table_fields import Action, ResourceKind

if TYPE_CHECKING:
    from .context import AppContext

Fetch = Callable[["AppContext", Optional[str]], List[Any]]
Render = Callable[[Any], Dict[str, Any]]


@dataclass(frozen=True)
class KindBinding:
    """Capabilities of a resource kind."""

    kind: ResourceKind
    fetch: Fetch
    render: Render
    actions: FrozenSet[Action] = field(default_factory=frozenset)


_registry: Dict[ResourceKind, KindBinding] = {}


def register_kind(
    kind: ResourceKind,
    fetch: Optional[Fetch],
    render: Optional[Render],
    actions: Optional[Iterable[Action]],
) -> KindBinding:
    """Register all capabilities of a resource kind at once.

    Raises:
        RegistryError: Any of the capabilities is missing or the kind is already registered.
    """
    if fetch is None or render is None or actions is None:
        raise RegistryError(
            "Partial registration of a resource kind", {"kind": kind.value}
        )
    if kind in _registry:
        raise RegistryError("Resource kind registered twice", {"kind": kind.value})
    binding = KindBinding(
        kind=kind, fetch=fetch, render=render, actions=frozenset(actions)
    )
    _registry[kind] = binding
    return binding


def get_binding(kind: ResourceKind) -> KindBinding:
    """Look up the capabilities of a resource kind.

    Raises:
        RegistryError: The kind is not registered.
    """
    try:
        return _registry[ResourceKind(kind)]
    except (KeyError, ValueError) as e:
        raise RegistryError("Unknown resource kind", {"kind": str(kind)}) from e


def registered_kinds() -> List[ResourceKind]:
    return list(_registry)


def kind_of_action(action: Action) -> ResourceKind:
    """The resource kind an action operates on."""
    for binding in _registry.values():
        if action in binding.actions:
            return binding.kind
    raise RegistryError("Action is not bound to any kind", {"action": action.value})


def validate_registry(kinds: Iterable[ResourceKind] = ResourceKind):
    """Check that every kind is registered and every action is bound exactly once.

    Raises:
        RegistryError: The registry is incomplete or inconsistent.
    """
    missing = [k.value for k in kinds if k not in _registry]
    if missing:
        raise RegistryError("Resource kinds without registration", {"kinds": missing})
    seen: Dict[Action, ResourceKind] = {}
    for binding in _registry.values():
        for action in binding.actions:
            if action in seen:
                raise RegistryError(
                    "Action bound to several kinds",
                    {
                        "action": action.value,
                        "kinds": [seen[action].value, binding.kind.value],
                    },
                )
            seen[action] = binding.kind


# ##############################################################################
# Helpers


FILTER_ATTRIBUTES = {
    ResourceKind.INSTANCES: "instance_type",
    ResourceKind.RESERVED: "instance_type",
    ResourceKind.SPOT: "instance_type",
    ResourceKind.AMI: "name",
    ResourceKind.ECR: "repository",
    ResourceKind.ACCESS_KEY: "user_name",
    ResourceKind.ROUTE53: "name",
}
"""Attribute of the live descriptors matched by listing filters, defaults to the id."""


def live(fetch: Callable[["AppContext"], List[ResourceDescriptor]]) -> Fetch:
    """Apply the kind-specific, case-insensitive substring filter to a live fetcher."""

    def fetch_filtered(ctx: "AppContext", search: Optional[str] = None):
        descriptors = fetch(ctx)
        if not search:
            return descriptors
        return [
            d
            for d in descriptors
            if contains(
                str(d.attributes.get(FILTER_ATTRIBUTES.get(d.kind), d.id)), search
            )
        ]

    fetch_filtered.__name__ = fetch.__name__
    fetch_filtered.__doc__ = fetch.__doc__
    return fetch_filtered


def render_descriptor(descriptor: ResourceDescriptor) -> Dict[str, Any]:
    """Identifier followed by the display attributes."""
    return {"id": descriptor.id, **descriptor.attributes}


def render_row(row) -> Dict[str, Any]:
    """All columns of a cached table row."""
    return {c: getattr(row, c) for c in row.get_columns()["all"]}


def render_price(row: PriceRow) -> Dict[str, Any]:
    rendered = row.model_dump(exclude={"price_timestamp"})
    rendered["price_type"] = row.price_type.value
    rendered["observed_at"] = row.price_timestamp.isoformat()
    return rendered


def fetch_families(ctx: "AppContext", search: Optional[str] = None):
    with ctx.store.session() as session:
        return queries.families(session, search)


def fetch_instance_types(ctx: "AppContext", search: Optional[str] = None):
    with ctx.store.session() as session:
        return queries.instance_types(session, search)


def fetch_prices(ctx: "AppContext", search: Optional[str] = None) -> List[PriceRow]:
    with ctx.store.session() as session:
        return queries.latest_prices(session, search)


# ##############################################################################
# Registrations

register_kind(
    ResourceKind.INSTANCES,
    live(ec2.list_instances),
    render_descriptor,
    [
        Action.TERMINATE_INSTANCE,
        Action.RUN_INSTANCE,
        Action.CREATE_IMAGE,
        Action.TAG_RESOURCE,
    ],
)
register_kind(ResourceKind.RESERVED, live(ec2.list_reserved), render_descriptor, [])
register_kind(
    ResourceKind.SPOT,
    live(ec2.list_spot_requests),
    render_descriptor,
    [Action.REQUEST_SPOT, Action.CANCEL_SPOT],
)
register_kind(
    ResourceKind.AMI, live(ec2.list_amis), render_descriptor, [Action.DELETE_IMAGE]
)
register_kind(
    ResourceKind.VOLUME,
    live(ec2.list_volumes),
    render_descriptor,
    [
        Action.CREATE_VOLUME,
        Action.DELETE_VOLUME,
        Action.ATTACH_VOLUME,
        Action.DETACH_VOLUME,
        Action.MODIFY_VOLUME,
        Action.CREATE_SNAPSHOT,
    ],
)
register_kind(
    ResourceKind.SNAPSHOT,
    live(ec2.list_snapshots),
    render_descriptor,
    [Action.DELETE_SNAPSHOT],
)
register_kind(
    ResourceKind.ECR,
    live(ecr.list_images),
    render_descriptor,
    [Action.DELETE_ECR_IMAGE, Action.CLEANUP_ECR_IMAGES],
)
register_kind(ResourceKind.KEY, live(ec2.list_key_pairs), render_descriptor, [])
register_kind(
    ResourceKind.SCRIPT,
    live(local.list_scripts),
    render_descriptor,
    [Action.WRITE_SCRIPT, Action.DELETE_SCRIPT],
)
register_kind(
    ResourceKind.USER,
    live(iam.list_users),
    render_descriptor,
    [
        Action.CREATE_USER,
        Action.DELETE_USER,
        Action.ADD_USER_TO_GROUP,
        Action.REMOVE_USER_FROM_GROUP,
    ],
)
register_kind(ResourceKind.GROUP, live(iam.list_groups), render_descriptor, [])
register_kind(
    ResourceKind.ACCESS_KEY,
    live(iam.list_access_keys),
    render_descriptor,
    [Action.CREATE_ACCESS_KEY, Action.DELETE_ACCESS_KEY],
)
register_kind(
    ResourceKind.ROUTE53,
    live(route53.list_records),
    render_descriptor,
    [Action.UPSERT_DNS_RECORD],
)
register_kind(
    ResourceKind.SYSTEMD,
    live(local.list_services),
    render_descriptor,
    [Action.START_SERVICE, Action.STOP_SERVICE, Action.RESTART_SERVICE],
)
register_kind(
    ResourceKind.EMAIL, live(s3.list_emails), render_descriptor, [Action.DELETE_EMAIL]
)
register_kind(ResourceKind.INSTANCE_FAMILY, fetch_families, render_row, [])
register_kind(ResourceKind.INSTANCE_TYPE, fetch_instance_types, render_row, [])
register_kind(ResourceKind.PRICE, fetch_prices, render_price, [])

validate_registry()
