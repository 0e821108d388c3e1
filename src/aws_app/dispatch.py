"""Validate and execute mutating actions against the remote APIs.

Destructive actions are idempotent: a missing target is reported as
[NOT_FOUND_TREATED_AS_SUCCESS][aws_app.table_fields.ActionStatus] instead of
an error. Dispatching never writes the Cache Store.
"""

from dataclasses import dataclass
from ipaddress import IPv4Address
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Type

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from typing_extensions import Annotated

from .exceptions import AppError, RegistryError, RemoteNotFoundError, ValidationError
from .logger import logger
from .resource_kinds import kind_of_action
from .schemas import ActionOutcome
from .services import ec2, ecr, iam, local, route53, s3
from .table_fields import Action, ActionStatus, ResourceKind

if TYPE_CHECKING:
    from .context import AppContext


# ##############################################################################
# Action parameters


class Params(BaseModel):
    model_config = ConfigDict(extra="forbid")


def _non_empty_tags(tags: Dict[str, str]) -> Dict[str, str]:
    for key, value in tags.items():
        if not key.strip():
            raise ValueError("tag keys must not be empty")
        if not value.strip():
            raise ValueError(f"value of tag {key} must not be empty")
    return tags


Tags = Annotated[Dict[str, str], AfterValidator(_non_empty_tags)]


class TagParams(Params):
    tags: Annotated[Tags, Field(min_length=1)]


class LaunchParams(Params):
    instance_type: str = Field(min_length=1)
    key_name: Optional[str] = None
    security_group: Optional[str] = None
    script: Optional[str] = None
    tags: Tags = {}


class SpotParams(LaunchParams):
    price: Optional[float] = Field(default=None, gt=0)


class ImageParams(Params):
    name: str = Field(min_length=1)


class CreateVolumeParams(Params):
    size: Optional[int] = Field(default=None, gt=0)
    snapshot_id: Optional[str] = None


class AttachVolumeParams(Params):
    instance_id: str = Field(min_length=1)
    device: str = "/dev/sdh"


class ModifyVolumeParams(Params):
    size: int = Field(gt=0)


class SnapshotParams(Params):
    tags: Tags = {}


class RepositoryParams(Params):
    repository: str = Field(min_length=1)


class GroupParams(Params):
    group_name: str = Field(min_length=1)


class AccessKeyParams(Params):
    user_name: str = Field(min_length=1)


class DnsRecordParams(Params):
    zone_id: str = Field(min_length=1)
    ip_address: IPv4Address


class ScriptParams(Params):
    content: str


# ##############################################################################
# Target resolution

ID_PREFIXES = {
    ResourceKind.INSTANCES: "i-",
    ResourceKind.VOLUME: "vol-",
    ResourceKind.SNAPSHOT: "snap-",
    ResourceKind.AMI: "ami-",
}

NAME_MAPS = {
    ResourceKind.INSTANCES: ec2.instance_name_map,
    ResourceKind.VOLUME: ec2.volume_name_map,
    ResourceKind.SNAPSHOT: ec2.snapshot_name_map,
    ResourceKind.AMI: ec2.ami_name_map,
}


def resolve_target(ctx: "AppContext", kind: ResourceKind, target_id: str) -> str:
    """Map a Name tag (or AMI name) to the resource id.

    Targets already looking like an EC2 id are returned unchanged, as are
    names not found, leaving the not found condition to the remote API.
    """
    if any(target_id.startswith(p) for p in ID_PREFIXES.values()):
        return target_id
    resolved = NAME_MAPS[kind](ctx).get(target_id, target_id)
    if resolved != target_id:
        logger.debug("Resolved %s to %s", target_id, resolved)
    return resolved


# ##############################################################################
# Handlers


def _launch_defaults(ctx: "AppContext", params: LaunchParams, security_group: str):
    return dict(
        key_name=params.key_name or ctx.config.default_key_name or "",
        security_group=params.security_group or security_group,
        user_data=ec2.user_data_from_script(
            params.script, ctx.config.script_directory
        ),
    )


def _run_instance(ctx: "AppContext", target: str, params: LaunchParams) -> dict:
    instance_ids = ec2.run_instance(
        ctx.remote,
        ami=target,
        instance_type=params.instance_type,
        tags=params.tags,
        **_launch_defaults(ctx, params, ctx.config.default_security_group),
    )
    return {"instance_ids": instance_ids}


def _request_spot(ctx: "AppContext", target: str, params: SpotParams) -> dict:
    price = params.price or ctx.config.max_spot_price
    if price > ctx.config.max_spot_price:
        raise ValidationError(
            "Spot price above the configured maximum",
            {"price": price, "max_spot_price": ctx.config.max_spot_price},
        )
    request_ids = ec2.request_spot_instance(
        ctx.remote,
        ami=target,
        instance_type=params.instance_type,
        price=price,
        **_launch_defaults(ctx, params, ctx.config.spot_security_group),
    )
    return {"spot_request_ids": request_ids}


def _create_volume(ctx: "AppContext", target: str, params: CreateVolumeParams) -> dict:
    if params.size is None and params.snapshot_id is None:
        raise ValidationError("Either size or snapshot_id is required")
    volume_id = ec2.create_volume(
        ctx.remote, target, size=params.size, snapshot_id=params.snapshot_id
    )
    return {"volume_id": volume_id}


def _attach_volume(ctx: "AppContext", target: str, params: AttachVolumeParams) -> dict:
    instance_id = resolve_target(ctx, ResourceKind.INSTANCES, params.instance_id)
    return ec2.attach_volume(ctx.remote, target, instance_id, params.device)


def _modify_volume(ctx: "AppContext", target: str, params: ModifyVolumeParams) -> dict:
    current = ec2.volume_size(ctx.remote, target)
    # EBS volumes cannot be shrunk
    if params.size < current:
        raise ValidationError(
            "Volume size cannot be decreased",
            {"current_size": current, "size": params.size},
        )
    return ec2.modify_volume(ctx.remote, target, params.size)


def _delete_email(ctx: "AppContext", target: str, params: Params) -> dict:
    if not ctx.config.email_bucket:
        raise ValidationError("No email bucket configured")
    return s3.delete_object(ctx.remote, ctx.config.email_bucket, target)


@dataclass(frozen=True)
class ActionSpec:
    """How to validate and execute an action.

    Attributes:
        handler: Callable receiving the context, the resolved target id and the parameters.
        params: Pydantic model validating the parameters before any remote call.
        destructive: If a missing target counts as success.
        resolve: Resource kind used for resolving names to ids.
    """

    handler: Callable[["AppContext", str, Any], Any]
    params: Type[Params] = Params
    destructive: bool = False
    resolve: Optional[ResourceKind] = None


ACTION_SPECS: Dict[Action, ActionSpec] = {
    Action.TERMINATE_INSTANCE: ActionSpec(
        lambda ctx, t, p: ec2.terminate_instance(ctx.remote, t),
        destructive=True,
        resolve=ResourceKind.INSTANCES,
    ),
    Action.RUN_INSTANCE: ActionSpec(
        _run_instance, LaunchParams, resolve=ResourceKind.AMI
    ),
    Action.CREATE_IMAGE: ActionSpec(
        lambda ctx, t, p: {"image_id": ec2.create_image(ctx.remote, t, p.name)},
        ImageParams,
        resolve=ResourceKind.INSTANCES,
    ),
    Action.TAG_RESOURCE: ActionSpec(
        lambda ctx, t, p: ec2.create_tags(ctx.remote, t, p.tags),
        TagParams,
        resolve=ResourceKind.INSTANCES,
    ),
    Action.REQUEST_SPOT: ActionSpec(
        _request_spot, SpotParams, resolve=ResourceKind.AMI
    ),
    Action.CANCEL_SPOT: ActionSpec(
        lambda ctx, t, p: ec2.cancel_spot_request(ctx.remote, t), destructive=True
    ),
    Action.DELETE_IMAGE: ActionSpec(
        lambda ctx, t, p: ec2.delete_image(ctx.remote, t),
        destructive=True,
        resolve=ResourceKind.AMI,
    ),
    Action.CREATE_VOLUME: ActionSpec(_create_volume, CreateVolumeParams),
    Action.DELETE_VOLUME: ActionSpec(
        lambda ctx, t, p: ec2.delete_volume(ctx.remote, t),
        destructive=True,
        resolve=ResourceKind.VOLUME,
    ),
    Action.ATTACH_VOLUME: ActionSpec(
        _attach_volume, AttachVolumeParams, resolve=ResourceKind.VOLUME
    ),
    Action.DETACH_VOLUME: ActionSpec(
        lambda ctx, t, p: ec2.detach_volume(ctx.remote, t),
        resolve=ResourceKind.VOLUME,
    ),
    Action.MODIFY_VOLUME: ActionSpec(
        _modify_volume, ModifyVolumeParams, resolve=ResourceKind.VOLUME
    ),
    Action.CREATE_SNAPSHOT: ActionSpec(
        lambda ctx, t, p: {
            "snapshot_id": ec2.create_snapshot(ctx.remote, t, p.tags)
        },
        SnapshotParams,
        resolve=ResourceKind.VOLUME,
    ),
    Action.DELETE_SNAPSHOT: ActionSpec(
        lambda ctx, t, p: ec2.delete_snapshot(ctx.remote, t),
        destructive=True,
        resolve=ResourceKind.SNAPSHOT,
    ),
    Action.DELETE_ECR_IMAGE: ActionSpec(
        lambda ctx, t, p: ecr.delete_images(ctx.remote, p.repository, [t]),
        RepositoryParams,
        destructive=True,
    ),
    Action.CLEANUP_ECR_IMAGES: ActionSpec(
        lambda ctx, t, p: ecr.cleanup_untagged_images(ctx.remote)
    ),
    Action.CREATE_USER: ActionSpec(lambda ctx, t, p: iam.create_user(ctx.remote, t)),
    Action.DELETE_USER: ActionSpec(
        lambda ctx, t, p: iam.delete_user(ctx.remote, t), destructive=True
    ),
    Action.ADD_USER_TO_GROUP: ActionSpec(
        lambda ctx, t, p: iam.add_user_to_group(ctx.remote, t, p.group_name),
        GroupParams,
    ),
    Action.REMOVE_USER_FROM_GROUP: ActionSpec(
        lambda ctx, t, p: iam.remove_user_from_group(ctx.remote, t, p.group_name),
        GroupParams,
        destructive=True,
    ),
    Action.CREATE_ACCESS_KEY: ActionSpec(
        lambda ctx, t, p: iam.create_access_key(ctx.remote, t)
    ),
    Action.DELETE_ACCESS_KEY: ActionSpec(
        lambda ctx, t, p: iam.delete_access_key(ctx.remote, p.user_name, t),
        AccessKeyParams,
        destructive=True,
    ),
    Action.UPSERT_DNS_RECORD: ActionSpec(
        lambda ctx, t, p: route53.upsert_a_record(
            ctx.remote, p.zone_id, t, str(p.ip_address)
        ),
        DnsRecordParams,
    ),
    Action.WRITE_SCRIPT: ActionSpec(
        lambda ctx, t, p: local.write_script(
            ctx.config.script_directory, t, p.content
        ),
        ScriptParams,
    ),
    Action.DELETE_SCRIPT: ActionSpec(
        lambda ctx, t, p: local.delete_script(ctx.config.script_directory, t),
        destructive=True,
    ),
    Action.START_SERVICE: ActionSpec(
        lambda ctx, t, p: local.control_service(ctx, "start", t)
    ),
    Action.STOP_SERVICE: ActionSpec(
        lambda ctx, t, p: local.control_service(ctx, "stop", t)
    ),
    Action.RESTART_SERVICE: ActionSpec(
        lambda ctx, t, p: local.control_service(ctx, "restart", t)
    ),
    Action.DELETE_EMAIL: ActionSpec(_delete_email, destructive=True),
}


def validate_actions():
    """Check that every action has a spec and is bound to a resource kind.

    Raises:
        RegistryError: An action is not fully configured.
    """
    missing = [a.value for a in Action if a not in ACTION_SPECS]
    if missing:
        raise RegistryError("Actions without a spec", {"actions": missing})
    for action in Action:
        kind_of_action(action)


validate_actions()


# ##############################################################################
# Dispatcher


def _result_dict(result: Any) -> Dict[str, Any]:
    if isinstance(result, dict):
        # drop boto3 response metadata
        return {k: v for k, v in result.items() if k != "ResponseMetadata"}
    return {"result": result}


def dispatch(
    ctx: "AppContext",
    action: Action,
    target_id: str,
    params: Optional[Dict[str, Any]] = None,
) -> ActionOutcome:
    """Validate and execute a mutating action.

    Args:
        ctx: Application context with the remote client and settings.
        action: The action to execute.
        target_id: Id (or Name tag) of the resource to act on.
        params: Action specific parameters.

    Returns:
        Outcome with `SUCCESS`, or `NOT_FOUND_TREATED_AS_SUCCESS` when a
            destructive action's target is already gone.

    Raises:
        ValidationError: Malformed action, target or parameters.
        RemoteError: The remote call failed, with the action and target id
            attached as context.
    """
    try:
        action = Action(action)
    except ValueError as e:
        raise ValidationError("Unknown action", {"action": str(action)}) from e
    context = {"action": action.value, "target_id": target_id}
    if not target_id or not target_id.strip():
        raise ValidationError("Target id must not be empty", context)
    spec = ACTION_SPECS[action]
    try:
        parsed = spec.params.model_validate(params or {})
    except PydanticValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(x) for x in err['loc'])}: {err['msg']}"
            for err in e.errors()
        )
        raise ValidationError(f"Invalid parameters ({errors})", context) from e

    try:
        target = target_id
        if spec.resolve is not None:
            target = resolve_target(ctx, spec.resolve, target_id)
        result = spec.handler(ctx, target, parsed)
    except RemoteNotFoundError as e:
        if not spec.destructive:
            raise e.with_context(**context)
        logger.info("%s: %s already gone", action.value, target_id)
        return ActionOutcome(
            status=ActionStatus.NOT_FOUND_TREATED_AS_SUCCESS,
            action=action,
            target_id=target_id,
        )
    except AppError as e:
        raise e.with_context(**context)

    logger.info("%s: %s done", action.value, target_id)
    return ActionOutcome(
        status=ActionStatus.SUCCESS,
        action=action,
        target_id=target_id,
        result=_result_dict(result),
    )
