"""Table definitions of the Cache Store: instance families, types and prices."""

from typing import List

from sqlmodel import SQLModel

from .table_bases import (
    AppModel,
    InstanceFamilyBase,
    InstanceTypeBase,
    PriceObservationBase,
)
from .table_fields import Generation, PriceType  # noqa: F401 imported for docs


class InstanceFamily(InstanceFamilyBase, table=True):
    """Instance families, such as m5 (General purpose).

    Examples:
        >>> from aws_app.tables import InstanceFamily
        >>> InstanceFamily(family_name="m5", display_name="General purpose")
        InstanceFamily(...family_name='m5'...)
    """

    __tablename__ = "instance_family"


class InstanceType(InstanceTypeBase, table=True):
    """Instance types with their CPU and memory capacity."""

    __tablename__ = "instance_list"


class PriceObservation(PriceObservationBase, table=True):
    """Time series of instance type prices, append-only."""

    __tablename__ = "instance_pricing"


def is_table(table):
    try:
        return issubclass(table, AppModel) and hasattr(table, "__table__")
    except TypeError:
        return False


tables: List[SQLModel] = [o for o in globals().values() if is_table(o)]
