"""Presentation-ready listings composed from the Cache Store and live fetches."""

from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional

from pydantic import BaseModel

from . import queries
from .exceptions import AppError
from .logger import logger
from .resource_kinds import get_binding
from .schemas import InstancePrices, PriceRow
from .str_utils import contains
from .table_fields import PriceType, ResourceKind

if TYPE_CHECKING:
    from .context import AppContext


class Listing:
    """Lazy, restartable sequence of the resources of a kind.

    Each iteration performs a fresh read of the Cache Store or the remote API.

    Args:
        ctx: Application context.
        kind: Resource kind to be listed.
        search: Optional case-insensitive substring filter, matching the
            family name for cached kinds and a kind-specific attribute
            for live kinds.
    """

    def __init__(
        self, ctx: "AppContext", kind: ResourceKind, search: Optional[str] = None
    ):
        self.ctx = ctx
        self.kind = ResourceKind(kind)
        self.search = search
        self.binding = get_binding(self.kind)

    def __iter__(self) -> Iterator[Any]:
        return iter(self.binding.fetch(self.ctx, self.search))

    def rendered(self) -> Iterator[Dict[str, Any]]:
        """Freshly fetched items converted to columns for display."""
        for item in self:
            yield self.binding.render(item)

    def __repr__(self) -> str:
        return f"Listing(kind={self.kind.value!r}, search={self.search!r})"


def list_resources(
    ctx: "AppContext", kind: ResourceKind, search: Optional[str] = None
) -> Listing:
    """List the resources of a kind, see [Listing][aws_app.aggregate.Listing]."""
    return Listing(ctx, kind, search)


def cheapest(
    ctx: "AppContext",
    search: Optional[str] = None,
    price_type: Optional[PriceType] = None,
    limit: Optional[int] = None,
) -> List[PriceRow]:
    """Cheapest instance types of the families matching `search`.

    Uses the most recent observation per instance type and pricing model,
    sorted by price and then by instance type.
    """
    with ctx.store.session() as session:
        rows = queries.latest_prices(session, search, price_type)
    return rows[:limit] if limit else rows


def price_table(ctx: "AppContext", search: List[str]) -> List[InstancePrices]:
    """Latest prices of all pricing models for the instance types matching any search string.

    Sorted by the number of vCPUs and the memory amount.
    """
    with ctx.store.session() as session:
        display_names = {
            f.family_name: f.display_name for f in queries.families(session)
        }
        types = [
            t
            for t in queries.instance_types(session)
            if not search or any(contains(t.instance_type, s) for s in search)
        ]
        prices = {
            (p.instance_type, p.price_type): p.price
            for p in queries.latest_prices(session)
        }
    table = [
        InstancePrices(
            instance_type=t.instance_type,
            family_name=t.family_name,
            display_name=display_names.get(t.family_name, ""),
            n_cpu=t.n_cpu,
            memory_gib=t.memory_gib,
            ondemand=prices.get((t.instance_type, PriceType.ONDEMAND)),
            reserved=prices.get((t.instance_type, PriceType.RESERVED)),
            spot=prices.get((t.instance_type, PriceType.SPOT)),
        )
        for t in types
    ]
    table.sort(key=lambda p: (p.n_cpu, p.memory_gib, p.instance_type))
    return table


class KindListing(BaseModel):
    """Rendered listing of a kind on a page, or the reason it is missing."""

    kind: ResourceKind
    rows: List[Dict[str, Any]] = []
    error: Optional[str] = None


def page(
    ctx: "AppContext",
    kinds: List[ResourceKind],
    search: Optional[str] = None,
) -> List[KindListing]:
    """List several kinds concurrently.

    A failing kind degrades to an empty listing with the error reason
    instead of failing the whole page.
    """

    def render(kind: ResourceKind) -> KindListing:
        try:
            rows = list(list_resources(ctx, kind, search).rendered())
        except AppError as e:
            logger.error("Cannot list %s: %s", ResourceKind(kind).value, e)
            return KindListing(kind=kind, error=str(e))
        return KindListing(kind=kind, rows=rows)

    with ThreadPoolExecutor(max_workers=ctx.config.max_concurrency) as executor:
        return list(executor.map(render, kinds))
