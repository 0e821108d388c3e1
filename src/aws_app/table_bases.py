"""Pydantic models with the fields of the Cache Store tables defined in [aws_app.tables][]."""

from datetime import datetime
from typing import Dict, List, Optional, Union

from sqlalchemy import DateTime, String
from sqlalchemy.inspection import inspect
from sqlmodel import Field, SQLModel

from .table_fields import Generation, PriceType


class AppMetaModel(SQLModel.__class__):
    """Custom class factory to auto-update table models.

    - Reuse description of the table and its fields as SQL comment.

        Checking if the table and its fields have explicit comment set
        to be shown in the `CREATE TABLE` statements, and if not,
        reuse the optional table and field descriptions. Table
        docstrings are truncated to first line.

    - Set `__validator__` to the parent Pydantic model without
        `table=True`, which is useful for running validations.
        The Pydantic model is found by the parent class' name ending in "Base".
    """

    def __init__(subclass, *args, **kwargs):
        super().__init__(*args, **kwargs)
        # early return for non-tables
        if subclass.model_config.get("table") is None:
            return
        satable = subclass.metadata.tables[subclass.__tablename__]

        if subclass.__doc__ and satable.comment is None:
            satable.comment = subclass.__doc__.splitlines()[0]

        for k, v in subclass.model_fields.items():
            comment = satable.columns[k].comment
            if v.description and comment is None:
                satable.columns[k].comment = v.description

        subclass.__validator__ = [
            m for m in subclass.__bases__ if m.__name__.endswith("Base")
        ][0]


class AppModel(SQLModel, metaclass=AppMetaModel):
    """Custom extensions to SQLModel objects and tables.

    Extra features:

    - reuse description field of tables/columns as SQL comment,
    - column name lookups by role (primary keys vs attributes),
    - access to the Pydantic model used for validating rows.
    """

    @classmethod
    def get_columns(cls) -> Dict[str, List[str]]:
        """Return the table's column names in a dict for all, primary keys, and attributes."""
        columns = cls.__table__.columns.keys()
        pks = [pk.name for pk in inspect(cls).primary_key]
        attributes = [a for a in columns if a not in set(pks)]
        return {"all": columns, "primary_keys": pks, "attributes": attributes}

    @classmethod
    def get_table_name(cls) -> str:
        """Return the SQLModel object's table name."""
        return str(cls.__tablename__)

    @classmethod
    def get_validator(cls) -> Union["AppModel", None]:
        """Return the parent Base Pydantic model (without a table definition)."""
        if cls.model_config.get("table") is None:
            return None
        return cls.__validator__


class InstanceFamilyBase(AppModel):
    family_name: str = Field(
        primary_key=True, description="Instance family, e.g. m5 or c6g."
    )
    display_name: str = Field(
        description="Category of the family, e.g. General purpose."
    )


class InstanceTypeBase(AppModel):
    instance_type: str = Field(
        primary_key=True, description="Instance type, e.g. m5.xlarge."
    )
    family_name: str = Field(
        foreign_key="instance_family.family_name",
        index=True,
        description="Reference to the InstanceFamily.",
    )
    n_cpu: int = Field(gt=0, description="Default number of vCPUs.")
    memory_gib: float = Field(gt=0, description="Memory amount in GiB.")
    generation: Generation = Field(
        sa_type=String, description="Virtualization generation (hvm or pv)."
    )


class PriceObservationBase(AppModel):
    id: Optional[int] = Field(
        default=None, primary_key=True, description="Surrogate sequence id."
    )
    instance_type: str = Field(
        index=True,
        description="Instance type, not enforced as a foreign key to keep history.",
    )
    price: float = Field(ge=0, description="Hourly price in USD.")
    price_type: PriceType = Field(
        sa_type=String, index=True, description="Pricing model of the observation."
    )
    price_timestamp: datetime = Field(
        sa_type=DateTime(timezone=True),
        description="Time of the observation (UTC).",
    )
