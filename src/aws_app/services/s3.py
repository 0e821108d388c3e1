"""Inbound emails stored as objects in an S3 bucket."""

from typing import TYPE_CHECKING, List

from ..backoff import RemoteClient
from ..schemas import ResourceDescriptor
from ..table_fields import ResourceKind

if TYPE_CHECKING:
    from ..context import AppContext


def list_emails(ctx: "AppContext") -> List[ResourceDescriptor]:
    bucket = ctx.config.email_bucket
    if not bucket:
        return []
    result = ctx.remote.paginate("s3", "list_objects_v2", Bucket=bucket)
    return [
        ResourceDescriptor(
            kind=ResourceKind.EMAIL,
            id=o["Key"],
            attributes={
                "bucket": bucket,
                "size": o.get("Size", 0),
                "last_modified": str(o.get("LastModified", "")),
            },
            metadata=o,
        )
        for o in result.get("Contents", [])
    ]


def delete_object(remote: RemoteClient, bucket: str, key: str) -> dict:
    return remote.call("s3", "delete_object", Bucket=bucket, Key=key)
