from enum import Enum
from logging import DEBUG
from typing import Any, List, Optional

from rich.progress import Progress
from sqlalchemy import delete, insert
from sqlalchemy.dialects.postgresql import insert as insert_postgresql
from sqlalchemy.dialects.sqlite import insert as insert_sqlite
from sqlmodel import Session

from .logger import logger
from .table_bases import AppModel
from .utils import chunk_list, is_postgresql, is_sqlite

CHUNK_SIZE = 100


def can_bulk_insert(session: Session) -> bool:
    """Checks if bulk upsert is supported for the engine dialect of a SQLModel session."""
    return is_sqlite(session) or is_postgresql(session)


def validate_items(model: AppModel, items: List[dict]) -> List[dict]:
    """Validates a list of items against the Pydantic model of a table.

    Args:
        model: A table definition with a `*Base` parent used for validation.
        items: List of dictionaries to be checked against `model`.

    Returns:
        List of validated dicts in the same order, with defaults filled in
            and enums converted to their values.

    Raises:
        pydantic.ValidationError: Any of the items is invalid.
    """
    schema = model.get_validator()
    validated = []
    for item in items:
        row = schema.model_validate(item).model_dump()
        validated.append(
            {k: v.value if isinstance(v, Enum) else v for k, v in row.items()}
        )
    logger.log(
        DEBUG, "%d %s object(s) validated", len(validated), model.get_table_name()
    )
    return validated


def _add_task(progress: Optional[Progress], text: str, total: int):
    if progress:
        return progress.add_task(text, total=total)
    return None


def upsert_items(
    model: AppModel,
    items: List[dict],
    session: Session,
    progress: Optional[Progress] = None,
):
    """Insert or update rows by primary key, with `ON CONFLICT` update where supported.

    Other database engines fall back to the slower `session.merge` approach.

    Args:
        model: An SQLModel table definition with primary key(s).
        items: List of dicts with all columns of the model.
        session: Database connection, commit is up to the caller.
        progress: Optional progress bar to track the status of the upsert.
    """
    model_name = model.get_table_name()
    columns = model.get_columns()
    pid = _add_task(progress, f"Upserting {model_name}(s)", len(items))
    if not can_bulk_insert(session):
        for item in items:
            session.merge(model.model_validate(item))
            if progress:
                progress.update(pid, advance=1)
        session.flush()
        return
    # need to split list into smaller chunks to avoid "too many SQL variables"
    for chunk in chunk_list(items, CHUNK_SIZE):
        if is_sqlite(session):
            query = insert_sqlite(model).values(chunk)
        else:
            query = insert_postgresql(model).values(chunk)
        query = query.on_conflict_do_update(
            index_elements=[getattr(model, c) for c in columns["primary_keys"]],
            set_={c: query.excluded[c] for c in columns["attributes"]},
        )
        session.execute(query)
        if progress:
            progress.update(pid, advance=len(chunk))


def delete_items(
    model: AppModel,
    keys: List[Any],
    session: Session,
    progress: Optional[Progress] = None,
):
    """Delete rows of a single-column primary key table.

    Args:
        model: An SQLModel table definition with one primary key.
        keys: Primary key values of the rows to be deleted.
        session: Database connection, commit is up to the caller.
        progress: Optional progress bar to track the status of the deletion.
    """
    pk = model.get_columns()["primary_keys"][0]
    pid = _add_task(progress, f"Deleting {model.get_table_name()}(s)", len(keys))
    for chunk in chunk_list(list(keys), CHUNK_SIZE):
        session.execute(delete(model).where(getattr(model, pk).in_(chunk)))
        if progress:
            progress.update(pid, advance=len(chunk))


def append_items(
    model: AppModel,
    items: List[dict],
    session: Session,
    progress: Optional[Progress] = None,
):
    """Plain inserts without conflict handling, e.g. for time series rows.

    Args:
        model: An SQLModel table definition with an autoincrement primary key.
        items: List of dicts without the primary key column.
        session: Database connection, commit is up to the caller.
        progress: Optional progress bar to track the status of the inserts.
    """
    pks = set(model.get_columns()["primary_keys"])
    # let the database assign the sequence ids
    items = [
        {k: v for k, v in item.items() if not (k in pks and v is None)}
        for item in items
    ]
    pid = _add_task(progress, f"Appending {model.get_table_name()}(s)", len(items))
    for chunk in chunk_list(items, CHUNK_SIZE):
        session.execute(insert(model), chunk)
        if progress:
            progress.update(pid, advance=len(chunk))
