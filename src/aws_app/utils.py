from datetime import datetime, timezone
from hashlib import sha1
from json import dumps
from typing import Any, Iterable, List

from sqlmodel import Session


def jsoned_hash(*args, **kwargs):
    """Hash the JSON-dump of all positional and keyword arguments.

    Examples:
        >>> jsoned_hash(42)
        '0211c62419aece235ba19582d3cf7fd8e25f837c'
        >>> jsoned_hash(everything=42)
        '8f8a7fcade8cb632b856f46fc64c1725ee387617'
    """
    return sha1(
        dumps({"args": args, "kwargs": kwargs}, sort_keys=True, default=str).encode()
    ).hexdigest()


def chunk_list(items: List[Any], size: int) -> Iterable[List[Any]]:
    """Split a list into chunks of a specified size.

    Examples:
        >>> [len(x) for x in chunk_list(range(10), 3)]
        [3, 3, 3, 1]
    """
    for i in range(0, len(items), size):
        yield items[i : i + size]


def is_sqlite(session: Session) -> bool:
    """Checks if a SQLModel session is binded to a SQLite database."""
    return session.bind.dialect.name == "sqlite"


def is_postgresql(session: Session) -> bool:
    """Checks if a SQLModel session is binded to a PostgreSQL-like database.

    Dialect name is checked for PostgreSQL or CockroachDB."""
    return session.bind.dialect.name in ["postgresql", "cockroachdb"]


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes, e.g. as read back from SQLite.

    Examples:
        >>> as_utc(datetime(2024, 1, 1)).isoformat()
        '2024-01-01T00:00:00+00:00'
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def hash_without_clients(args, kwds) -> str:
    """`cachier` hash function skipping the remote client arguments.

    Clients are neither picklable nor meaningful for the cache key, so only
    the plain arguments (e.g. region and filters) are hashed.
    """
    from .backoff import RemoteClient

    args = [a for a in args if not isinstance(a, RemoteClient)]
    kwds = {k: v for k, v in kwds.items() if not isinstance(v, RemoteClient)}
    return jsoned_hash(*args, **kwds)
