"""IAM users, groups and access keys."""

from typing import TYPE_CHECKING, List

from ..backoff import RemoteClient
from ..schemas import ResourceDescriptor
from ..table_fields import ResourceKind

if TYPE_CHECKING:
    from ..context import AppContext


def list_users(ctx: "AppContext") -> List[ResourceDescriptor]:
    result = ctx.remote.paginate("iam", "list_users")
    return [
        ResourceDescriptor(
            kind=ResourceKind.USER,
            id=u["UserName"],
            attributes={
                "user_id": u.get("UserId", ""),
                "arn": u.get("Arn", ""),
                "created": str(u.get("CreateDate", "")),
            },
            metadata=u,
        )
        for u in result.get("Users", [])
    ]


def list_groups(ctx: "AppContext") -> List[ResourceDescriptor]:
    result = ctx.remote.paginate("iam", "list_groups")
    return [
        ResourceDescriptor(
            kind=ResourceKind.GROUP,
            id=g["GroupName"],
            attributes={
                "group_id": g.get("GroupId", ""),
                "arn": g.get("Arn", ""),
                "created": str(g.get("CreateDate", "")),
            },
            metadata=g,
        )
        for g in result.get("Groups", [])
    ]


def list_access_keys(ctx: "AppContext") -> List[ResourceDescriptor]:
    descriptors = []
    for user in list_users(ctx):
        result = ctx.remote.paginate("iam", "list_access_keys", UserName=user.id)
        for key in result.get("AccessKeyMetadata", []):
            descriptors.append(
                ResourceDescriptor(
                    kind=ResourceKind.ACCESS_KEY,
                    id=key["AccessKeyId"],
                    attributes={
                        "user_name": key.get("UserName", user.id),
                        "status": key.get("Status", ""),
                        "created": str(key.get("CreateDate", "")),
                    },
                    metadata=key,
                )
            )
    return descriptors


def create_user(remote: RemoteClient, user_name: str) -> dict:
    return remote.call("iam", "create_user", UserName=user_name).get("User", {})


def delete_user(remote: RemoteClient, user_name: str) -> dict:
    return remote.call("iam", "delete_user", UserName=user_name)


def add_user_to_group(remote: RemoteClient, user_name: str, group_name: str) -> dict:
    return remote.call(
        "iam", "add_user_to_group", UserName=user_name, GroupName=group_name
    )


def remove_user_from_group(
    remote: RemoteClient, user_name: str, group_name: str
) -> dict:
    return remote.call(
        "iam", "remove_user_from_group", UserName=user_name, GroupName=group_name
    )


def create_access_key(remote: RemoteClient, user_name: str) -> dict:
    result = remote.call("iam", "create_access_key", UserName=user_name)
    return result.get("AccessKey", {})


def delete_access_key(remote: RemoteClient, user_name: str, access_key_id: str) -> dict:
    return remote.call(
        "iam", "delete_access_key", UserName=user_name, AccessKeyId=access_key_id
    )
