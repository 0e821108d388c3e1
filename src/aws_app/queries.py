"""Read queries over the Cache Store tables."""

from typing import Dict, List, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from .schemas import PriceRow
from .table_fields import PriceType
from .tables import InstanceFamily, InstanceType, PriceObservation
from .utils import as_utc


def current_rows(session: Session, model) -> Dict[str, dict]:
    """Rows of a single primary key table, keyed by the primary key."""
    columns = model.get_columns()
    pk = columns["primary_keys"][0]
    rows = session.exec(select(model)).all()
    return {
        getattr(row, pk): {c: getattr(row, c) for c in columns["attributes"]}
        for row in rows
    }


def families(session: Session, search: Optional[str] = None) -> List[InstanceFamily]:
    """Instance families with a name containing `search`, case-insensitively."""
    query = select(InstanceFamily)
    if search:
        query = query.where(
            InstanceFamily.family_name.icontains(search, autoescape=True)
        )
    return list(session.exec(query.order_by(InstanceFamily.family_name)).all())


def instance_types(
    session: Session, search: Optional[str] = None
) -> List[InstanceType]:
    """Instance types of the families containing `search`, case-insensitively."""
    query = select(InstanceType)
    if search:
        query = query.where(
            InstanceType.family_name.icontains(search, autoescape=True)
        )
    query = query.order_by(InstanceType.family_name, InstanceType.instance_type)
    return list(session.exec(query).all())


def latest_prices(
    session: Session,
    search: Optional[str] = None,
    price_type: Optional[PriceType] = None,
) -> List[PriceRow]:
    """Most recent price observation per instance type and pricing model.

    Observations sharing the same timestamp are resolved by the highest
    sequence id. Rows are sorted by price, then by instance type.

    Args:
        session: Database connection.
        search: Optional case-insensitive substring of the family name.
        price_type: Optional pricing model to filter for.
    """
    ranked = select(
        PriceObservation.id,
        func.row_number()
        .over(
            partition_by=(PriceObservation.instance_type, PriceObservation.price_type),
            order_by=(
                PriceObservation.price_timestamp.desc(),
                PriceObservation.id.desc(),
            ),
        )
        .label("rank"),
    )
    if price_type is not None:
        ranked = ranked.where(
            PriceObservation.price_type == PriceType(price_type).value
        )
    ranked = ranked.subquery()
    query = (
        select(PriceObservation, InstanceType)
        .join(ranked, ranked.c.id == PriceObservation.id)
        .join(
            InstanceType,
            InstanceType.instance_type == PriceObservation.instance_type,
        )
        .where(ranked.c.rank == 1)
    )
    if search:
        query = query.where(
            InstanceType.family_name.icontains(search, autoescape=True)
        )
    query = query.order_by(PriceObservation.price, PriceObservation.instance_type)
    return [
        PriceRow(
            instance_type=price.instance_type,
            family_name=instance_type.family_name,
            n_cpu=instance_type.n_cpu,
            memory_gib=instance_type.memory_gib,
            price=price.price,
            price_type=price.price_type,
            price_timestamp=as_utc(price.price_timestamp),
        )
        for price, instance_type in session.exec(query).all()
    ]


def count_observations(session: Session, price_type: Optional[PriceType] = None) -> int:
    """Number of price observations, optionally of a single pricing model."""
    query = select(func.count(PriceObservation.id))
    if price_type is not None:
        query = query.where(PriceObservation.price_type == PriceType(price_type).value)
    return session.exec(query).one()
