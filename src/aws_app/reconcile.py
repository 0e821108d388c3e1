"""Keep the Cache Store consistent with the remote APIs.

Instance families and types are diffed against a fresh fetch and the
changes are applied in a single transaction, while prices are appended as
a new batch of observations on each successful fetch.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, NamedTuple, Optional

from pydantic import ValidationError as PydanticValidationError
from rich.progress import Progress

from . import queries
from .exceptions import RemoteTransientError, ValidationError
from .insert import append_items, delete_items, upsert_items, validate_items
from .logger import log_start_end, logger
from .schemas import SyncFailure, SyncReport, SyncSummary, TableChanges
from .services import ec2, pricing
from .table_fields import SyncKind
from .tables import InstanceFamily, InstanceType, PriceObservation
from .utils import utcnow

if TYPE_CHECKING:
    from .context import AppContext


class Diff(NamedTuple):
    """Primary keys to be inserted, updated and deleted."""

    new: List
    changed: List
    stale: List


def compute_diff(current: Dict, fresh: Dict) -> Diff:
    """Compare the cached and the freshly fetched rows keyed by primary key.

    Examples:
        >>> current = {"a": {"x": 1}, "b": {"x": 2}}
        >>> fresh = {"b": {"x": 2}, "c": {"x": 3}}
        >>> compute_diff(current, fresh)
        Diff(new=['c'], changed=[], stale=['a'])
        >>> compute_diff(current, {"a": {"x": 9}, "b": {"x": 2}})
        Diff(new=[], changed=['a'], stale=[])
    """
    new = sorted(k for k in fresh if k not in current)
    changed = sorted(k for k in fresh if k in current and fresh[k] != current[k])
    stale = sorted(k for k in current if k not in fresh)
    return Diff(new=new, changed=changed, stale=stale)


def _validate(model, items: List[dict]) -> List[dict]:
    try:
        return validate_items(model, items)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid {model.get_table_name()} data fetched",
            {"errors": e.error_count()},
        ) from e


def _keyed(model, items: List[dict]) -> Dict:
    columns = model.get_columns()
    pk = columns["primary_keys"][0]
    return {i[pk]: {c: i[c] for c in columns["attributes"]} for i in items}


def _changes(diff: Diff) -> TableChanges:
    return TableChanges(
        inserted=len(diff.new), updated=len(diff.changed), deleted=len(diff.stale)
    )


def _sync_instance_types(ctx: "AppContext", progress: Optional[Progress]) -> Dict:
    families, types = ec2.fetch_instance_types(ctx)
    families = _validate(InstanceFamily, families)
    types = _validate(InstanceType, types)
    fresh_families = _keyed(InstanceFamily, families)
    fresh_types = _keyed(InstanceType, types)
    rows = {f["family_name"]: f for f in families}
    rows.update({t["instance_type"]: t for t in types})

    with ctx.store.transaction() as session:
        family_diff = compute_diff(
            queries.current_rows(session, InstanceFamily), fresh_families
        )
        type_diff = compute_diff(
            queries.current_rows(session, InstanceType), fresh_types
        )
        # families first and last to keep every type's family reference valid
        upsert_items(
            InstanceFamily,
            [rows[k] for k in family_diff.new + family_diff.changed],
            session,
            progress,
        )
        upsert_items(
            InstanceType,
            [rows[k] for k in type_diff.new + type_diff.changed],
            session,
            progress,
        )
        delete_items(InstanceType, type_diff.stale, session, progress)
        delete_items(InstanceFamily, family_diff.stale, session, progress)

    return {
        InstanceFamily.get_table_name(): _changes(family_diff),
        InstanceType.get_table_name(): _changes(type_diff),
    }


PRICE_FETCHERS: Dict[SyncKind, Callable[["AppContext"], List[dict]]] = {
    SyncKind.ONDEMAND_PRICES: pricing.fetch_ondemand_prices,
    SyncKind.RESERVED_PRICES: pricing.fetch_reserved_prices,
    SyncKind.SPOT_PRICES: ec2.fetch_spot_prices,
}


def _sync_prices(
    ctx: "AppContext", kind: SyncKind, progress: Optional[Progress]
) -> Dict:
    observed_at = utcnow()
    prices = PRICE_FETCHERS[kind](ctx)
    for price in prices:
        price["price_timestamp"] = observed_at
    prices = _validate(PriceObservation, prices)
    with ctx.store.transaction() as session:
        append_items(PriceObservation, prices, session, progress)
    return {PriceObservation.get_table_name(): TableChanges(inserted=len(prices))}


@log_start_end
def reconcile(
    ctx: "AppContext", kind: SyncKind, progress: Optional[Progress] = None
) -> SyncReport:
    """Fetch the current remote state of a sync unit and apply it to the Cache Store.

    Args:
        ctx: Application context with the Cache Store and the remote client.
        kind: The sync unit to reconcile.
        progress: Optional progress bar to track the database writes.

    Raises:
        RemoteError: The remote fetch failed.
        CacheIOError: The transaction failed and was rolled back.
        ValidationError: The fetched data is invalid.
    """
    kind = SyncKind(kind)
    started_at = utcnow()
    if kind == SyncKind.INSTANCE_TYPES:
        tables = _sync_instance_types(ctx, progress)
    else:
        tables = _sync_prices(ctx, kind, progress)
    for table, changes in tables.items():
        logger.info(
            "%s: %d new, %d updated, %d deleted row(s)",
            table,
            changes.inserted,
            changes.updated,
            changes.deleted,
        )
    return SyncReport(
        kind=kind, tables=tables, started_at=started_at, finished_at=utcnow()
    )


def reconcile_all(
    ctx: "AppContext",
    kinds: Optional[Iterable[SyncKind]] = None,
    progress: Optional[Progress] = None,
    clock: Callable[[], float] = time.monotonic,
) -> SyncSummary:
    """Reconcile several sync units in parallel, isolating their failures.

    Sync units not started before the configured overall timeout are
    reported as skipped, while the already running ones are let to finish.

    Args:
        ctx: Application context with the Cache Store and the remote client.
        kinds: Sync units to reconcile, defaults to all.
        progress: Optional progress bar to track the reconciled kinds.
        clock: Monotonic clock used for the overall timeout.
    """
    kinds = list(SyncKind if kinds is None else kinds)
    deadline = clock() + ctx.config.sync_timeout
    if progress:
        pid = progress.add_task("Reconciling", total=len(kinds))

    def task(kind: SyncKind):
        try:
            if clock() > deadline:
                logger.warning("Skipping %s due to the overall timeout", kind.value)
                return kind, None
            try:
                return kind, reconcile(ctx, kind, progress)
            except Exception as e:
                logger.exception("Failed to reconcile %s", kind.value)
                return kind, e
        finally:
            if progress:
                progress.update(pid, advance=1)

    with ThreadPoolExecutor(max_workers=ctx.config.sync_workers) as executor:
        results = list(executor.map(task, kinds))

    summary = SyncSummary()
    for kind, result in results:
        if result is None:
            summary.skipped.append(kind)
        elif isinstance(result, SyncReport):
            summary.reports.append(result)
        else:
            summary.failures.append(
                SyncFailure(
                    kind=kind,
                    error_type=type(result).__name__,
                    message=str(result),
                    transient=isinstance(result, RemoteTransientError),
                )
            )
    return summary
