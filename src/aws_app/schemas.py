"""Transient models returned by the Reconciler, Dispatcher and Aggregator."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .table_fields import Action, ActionStatus, PriceType, ResourceKind, SyncKind


class ResourceDescriptor(BaseModel):
    """Live (never cached) description of a remote resource."""

    kind: ResourceKind = Field(description="Resource kind of the descriptor.")
    id: str = Field(description="Primary identifier at the provider.")
    attributes: Dict[str, Any] = Field(
        default={}, description="Attributes to be displayed."
    )
    metadata: Dict[str, Any] = Field(
        default={}, description="Raw provider-specific description."
    )


class TableChanges(BaseModel):
    """Number of rows changed in a table by a reconciliation pass."""

    inserted: int = 0
    updated: int = 0
    deleted: int = 0

    @property
    def is_empty(self) -> bool:
        return self.inserted == self.updated == self.deleted == 0


class SyncReport(BaseModel):
    """Successful reconciliation of a sync unit.

    Examples:
        >>> report = SyncReport(kind="instance_types", tables={"instance_family": TableChanges()})
        >>> report.is_empty
        True
    """

    kind: SyncKind
    tables: Dict[str, TableChanges] = {}
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def is_empty(self) -> bool:
        """True if nothing was inserted, updated or deleted."""
        return all(t.is_empty for t in self.tables.values())


class SyncFailure(BaseModel):
    """Failed reconciliation of a sync unit."""

    kind: SyncKind
    error_type: str
    message: str
    transient: bool = Field(
        default=False, description="If the failure might go away on a retry."
    )


class SyncSummary(BaseModel):
    """Outcome of a full reconciliation across all cached kinds."""

    reports: List[SyncReport] = []
    failures: List[SyncFailure] = []
    skipped: List[SyncKind] = Field(
        default=[], description="Kinds not started before the overall timeout."
    )

    @property
    def ok(self) -> bool:
        return not self.failures and not self.skipped


class ActionOutcome(BaseModel):
    """Result of a dispatched action."""

    status: ActionStatus
    action: Action
    target_id: str
    result: Dict[str, Any] = {}


class PriceRow(BaseModel):
    """Most recent price observation of an instance type joined with its capacity."""

    instance_type: str
    family_name: str
    n_cpu: int
    memory_gib: float
    price: float
    price_type: PriceType
    price_timestamp: datetime


class InstancePrices(BaseModel):
    """Latest prices of an instance type in all pricing models."""

    instance_type: str
    family_name: str
    display_name: str
    n_cpu: int
    memory_gib: float
    ondemand: Optional[float] = None
    reserved: Optional[float] = None
    spot: Optional[float] = None
