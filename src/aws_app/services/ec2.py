"""EC2 fetchers and mutators: instances, spot requests, AMIs, volumes, snapshots and keys."""

import base64
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from cachier import cachier, set_global_params

from ..backoff import RemoteClient
from ..logger import logger
from ..schemas import ResourceDescriptor
from ..str_utils import family_letters, family_of, print_tags, tags_to_dict
from ..table_fields import Generation, PriceType, ResourceKind
from ..utils import hash_without_clients, utcnow

if TYPE_CHECKING:
    from ..context import AppContext

# disable caching by default
set_global_params(caching_enabled=False, stale_after=timedelta(days=1))

UBUNTU_OWNER = "099720109477"
MIB_PER_GIB = 1024

DEFAULT_USER_DATA = """#!/bin/bash
apt-get update
apt-get install -y python3-pip awscli
"""
"""User data of new instances when no script is provided or found."""

# ##############################################################################
# Cached boto3 wrappers


@cachier(hash_func=hash_without_clients, separate_files=True)
def _describe_instance_types(remote: RemoteClient, region: str) -> List[dict]:
    result = remote.paginate("ec2", "describe_instance_types")
    return result.get("InstanceTypes", [])


@cachier(hash_func=hash_without_clients, separate_files=True)
def _describe_spot_price_history(remote: RemoteClient, region: str) -> List[dict]:
    result = remote.paginate(
        "ec2",
        "describe_spot_price_history",
        Filters=[{"Name": "product-description", "Values": ["Linux/UNIX"]}],
        StartTime=utcnow(),
    )
    return result.get("SpotPriceHistory", [])


# ##############################################################################
# Reference data for the Cache Store

_instance_families = {
    "a": "AWS Graviton",
    "c": "Compute optimized",
    "d": "Dense storage",
    "dl": "Deep Learning",
    "f": "FPGA",
    "g": "Graphics intensive",
    "gr": "Graphics intensive with a one to eight ratio of vCPU to memory",
    "h": "Cost-effective storage optimized with HDD",
    "hpc": "High performance computing",
    "i": "Storage optimized",
    "im": "Storage optimized with a one to four ratio of vCPU to memory",
    "is": "Storage optimized with a one to six ratio of vCPU to memory",
    "inf": "AWS Inferentia",
    "m": "General purpose",
    "mac": "macOS",
    "p": "GPU accelerated",
    "r": "Memory optimized",
    "t": "Burstable performance",
    "trn": "AWS Trainium",
    "u": "High memory",
    "vt": "Video transcoding",
    "x": "Memory intensive",
    "z": "High frequency",
}


def family_display_name(family_name: str) -> str:
    """Human-friendly category of an instance family.

    Examples:
        >>> family_display_name("m5")
        'General purpose'
        >>> family_display_name("u-6tb1")
        'High memory'
    """
    letters = family_letters(family_name)
    try:
        return _instance_families[letters]
    except KeyError:
        logger.warning("Unknown instance family: %s", family_name)
        return "Unknown"


def _make_instance_type(instance_type: dict) -> dict:
    virtualization = instance_type.get("SupportedVirtualizationTypes", [])
    return {
        "instance_type": instance_type["InstanceType"],
        "family_name": family_of(instance_type["InstanceType"]),
        "n_cpu": instance_type["VCpuInfo"]["DefaultVCpus"],
        "memory_gib": instance_type["MemoryInfo"]["SizeInMiB"] / MIB_PER_GIB,
        "generation": (
            Generation.PV if "paravirtual" in virtualization else Generation.HVM
        ),
    }


def fetch_instance_types(ctx: "AppContext") -> Tuple[List[dict], List[dict]]:
    """List instance families and instance types of the configured region.

    Returns:
        Tuple of family rows and instance type rows, each family
            referenced by at least one instance type.
    """
    region = ctx.config.aws_region_name
    instance_types = [
        _make_instance_type(i)
        for i in _describe_instance_types(ctx.remote, region)
    ]
    family_names = sorted({i["family_name"] for i in instance_types})
    families = [
        {"family_name": f, "display_name": family_display_name(f)}
        for f in family_names
    ]
    logger.debug(
        "Found %d instance families and %d instance types in %s",
        len(families),
        len(instance_types),
        region,
    )
    return families, instance_types


def fetch_spot_prices(ctx: "AppContext") -> List[dict]:
    """Current spot price of each instance type in its cheapest availability zone."""
    history = _describe_spot_price_history(ctx.remote, ctx.config.aws_region_name)
    cheapest: Dict[str, float] = {}
    for item in history:
        try:
            price = float(item["SpotPrice"])
            instance_type = item["InstanceType"]
        except (KeyError, ValueError) as e:
            logger.debug("Cannot parse spot price %s: %s", item, e)
            continue
        if instance_type not in cheapest or price < cheapest[instance_type]:
            cheapest[instance_type] = price
    return [
        {"instance_type": k, "price": v, "price_type": PriceType.SPOT}
        for k, v in sorted(cheapest.items())
    ]


# ##############################################################################
# Live listings


def _name_tag(tags: Optional[List[dict]]) -> str:
    return tags_to_dict(tags).get("Name", "")


def list_instances(ctx: "AppContext") -> List[ResourceDescriptor]:
    result = ctx.remote.paginate("ec2", "describe_instances")
    descriptors = []
    for reservation in result.get("Reservations", []):
        for instance in reservation.get("Instances", []):
            descriptors.append(
                ResourceDescriptor(
                    kind=ResourceKind.INSTANCES,
                    id=instance["InstanceId"],
                    attributes={
                        "dns_name": instance.get("PublicDnsName", ""),
                        "state": instance.get("State", {}).get("Name", ""),
                        "name": _name_tag(instance.get("Tags")),
                        "instance_type": instance.get("InstanceType", ""),
                        "launch_time": str(instance.get("LaunchTime", "")),
                        "availability_zone": instance.get("Placement", {}).get(
                            "AvailabilityZone", ""
                        ),
                    },
                    metadata=instance,
                )
            )
    return descriptors


def list_reserved(ctx: "AppContext") -> List[ResourceDescriptor]:
    result = ctx.remote.call("ec2", "describe_reserved_instances")
    return [
        ResourceDescriptor(
            kind=ResourceKind.RESERVED,
            id=r["ReservedInstancesId"],
            attributes={
                "price": r.get("FixedPrice", 0.0),
                "instance_type": r.get("InstanceType", ""),
                "state": r.get("State", ""),
                "availability_zone": r.get("AvailabilityZone", ""),
            },
            metadata=r,
        )
        for r in result.get("ReservedInstances", [])
    ]


def list_spot_requests(ctx: "AppContext") -> List[ResourceDescriptor]:
    result = ctx.remote.paginate("ec2", "describe_spot_instance_requests")
    descriptors = []
    for r in result.get("SpotInstanceRequests", []):
        spec = r.get("LaunchSpecification", {})
        descriptors.append(
            ResourceDescriptor(
                kind=ResourceKind.SPOT,
                id=r["SpotInstanceRequestId"],
                attributes={
                    "price": float(r.get("SpotPrice", 0) or 0),
                    "image_id": spec.get("ImageId", ""),
                    "instance_type": spec.get("InstanceType", ""),
                    "spot_type": r.get("Type", ""),
                    "status": r.get("Status", {}).get("Code", ""),
                    "instance_id": r.get("InstanceId"),
                },
                metadata=r,
            )
        )
    return descriptors


def _ami_descriptor(image: dict) -> ResourceDescriptor:
    snapshot_ids = [
        b["Ebs"]["SnapshotId"]
        for b in image.get("BlockDeviceMappings", [])
        if "SnapshotId" in b.get("Ebs", {})
    ]
    return ResourceDescriptor(
        kind=ResourceKind.AMI,
        id=image["ImageId"],
        attributes={
            "name": image.get("Name", ""),
            "state": image.get("State", ""),
            "snapshot_ids": " ".join(snapshot_ids),
        },
        metadata=image,
    )


def latest_ubuntu_ami(ctx: "AppContext") -> Optional[ResourceDescriptor]:
    """Most recent official Ubuntu server AMI of the configured release."""
    release = ctx.config.ubuntu_release
    result = ctx.remote.call(
        "ec2",
        "describe_images",
        Filters=[
            {"Name": "owner-id", "Values": [UBUNTU_OWNER]},
            {
                "Name": "name",
                "Values": [f"ubuntu/images/hvm-ssd/ubuntu-{release}-amd64-server*"],
            },
        ],
    )
    images = sorted(result.get("Images", []), key=lambda i: i.get("Name", ""))
    return _ami_descriptor(images[-1]) if images else None


def list_own_amis(ctx: "AppContext") -> List[ResourceDescriptor]:
    owner_id = ctx.config.my_owner_id
    if owner_id is None:
        return []
    result = ctx.remote.call(
        "ec2",
        "describe_images",
        Filters=[{"Name": "owner-id", "Values": [owner_id]}],
    )
    return [_ami_descriptor(i) for i in result.get("Images", [])]


def list_amis(ctx: "AppContext") -> List[ResourceDescriptor]:
    amis = list_own_amis(ctx)
    ubuntu = latest_ubuntu_ami(ctx)
    if ubuntu is not None:
        amis.append(ubuntu)
    return amis


def list_volumes(ctx: "AppContext") -> List[ResourceDescriptor]:
    result = ctx.remote.paginate("ec2", "describe_volumes")
    return [
        ResourceDescriptor(
            kind=ResourceKind.VOLUME,
            id=v["VolumeId"],
            attributes={
                "availability_zone": v.get("AvailabilityZone", ""),
                "size": v.get("Size", 0),
                "iops": v.get("Iops", 0),
                "state": v.get("State", ""),
                "tags": print_tags(v.get("Tags")),
            },
            metadata=v,
        )
        for v in result.get("Volumes", [])
    ]


def list_snapshots(ctx: "AppContext") -> List[ResourceDescriptor]:
    owner_id = ctx.config.my_owner_id or "self"
    result = ctx.remote.paginate("ec2", "describe_snapshots", OwnerIds=[owner_id])
    return [
        ResourceDescriptor(
            kind=ResourceKind.SNAPSHOT,
            id=s["SnapshotId"],
            attributes={
                "volume_size": s.get("VolumeSize", 0),
                "state": s.get("State", ""),
                "progress": s.get("Progress", ""),
                "tags": print_tags(s.get("Tags")),
            },
            metadata=s,
        )
        for s in result.get("Snapshots", [])
    ]


def list_key_pairs(ctx: "AppContext") -> List[ResourceDescriptor]:
    result = ctx.remote.call("ec2", "describe_key_pairs")
    return [
        ResourceDescriptor(
            kind=ResourceKind.KEY,
            id=k["KeyName"],
            attributes={"fingerprint": k.get("KeyFingerprint", "")},
            metadata=k,
        )
        for k in result.get("KeyPairs", [])
        if "KeyName" in k
    ]


# ##############################################################################
# Name lookups


def instance_name_map(ctx: "AppContext") -> Dict[str, str]:
    """Map of the Name tags of running instances to instance ids."""
    return {
        d.attributes["name"]: d.id
        for d in list_instances(ctx)
        if d.attributes["name"] and d.attributes["state"] == "running"
    }


def ami_name_map(ctx: "AppContext") -> Dict[str, str]:
    """Map of AMI names to AMI ids."""
    return {d.attributes["name"]: d.id for d in list_own_amis(ctx)}


def volume_name_map(ctx: "AppContext") -> Dict[str, str]:
    return {
        tags_to_dict(d.metadata.get("Tags"))["Name"]: d.id
        for d in list_volumes(ctx)
        if "Name" in tags_to_dict(d.metadata.get("Tags"))
    }


def snapshot_name_map(ctx: "AppContext") -> Dict[str, str]:
    return {
        tags_to_dict(d.metadata.get("Tags"))["Name"]: d.id
        for d in list_snapshots(ctx)
        if "Name" in tags_to_dict(d.metadata.get("Tags"))
    }


# ##############################################################################
# Mutators


def user_data_from_script(script: Optional[str], script_directory: Path) -> str:
    """Read the user data from a script path or the script directory.

    Falls back to a built-in bootstrap script when the script is not found.
    """
    if script:
        for path in [Path(script), script_directory / script]:
            if path.is_file():
                return path.read_text()
        logger.warning("Script %s not found, using the default user data", script)
    return DEFAULT_USER_DATA


def _encode(user_data: str) -> str:
    return base64.b64encode(user_data.encode()).decode()


def _tag_list(tags: Dict[str, str]) -> List[dict]:
    return [{"Key": k, "Value": v} for k, v in tags.items()]


def terminate_instance(remote: RemoteClient, instance_id: str) -> dict:
    return remote.call("ec2", "terminate_instances", InstanceIds=[instance_id])


def create_tags(remote: RemoteClient, resource_id: str, tags: Dict[str, str]) -> dict:
    return remote.call(
        "ec2", "create_tags", Resources=[resource_id], Tags=_tag_list(tags)
    )


def run_instance(
    remote: RemoteClient,
    ami: str,
    instance_type: str,
    key_name: str,
    security_group: str,
    user_data: str,
    tags: Dict[str, str],
) -> List[str]:
    """Launch a single instance and tag it, returning the new instance ids."""
    kwargs = dict(
        ImageId=ami,
        InstanceType=instance_type,
        MinCount=1,
        MaxCount=1,
        SecurityGroupIds=[security_group],
        UserData=_encode(user_data),
    )
    if key_name:
        kwargs["KeyName"] = key_name
    result = remote.call("ec2", "run_instances", **kwargs)
    instance_ids = [i["InstanceId"] for i in result.get("Instances", [])]
    if tags:
        for instance_id in instance_ids:
            create_tags(remote, instance_id, tags)
    return instance_ids


def request_spot_instance(
    remote: RemoteClient,
    ami: str,
    instance_type: str,
    key_name: str,
    security_group: str,
    user_data: str,
    price: float,
) -> List[str]:
    """Request a single one-time spot instance, returning the request ids."""
    spec = {
        "ImageId": ami,
        "InstanceType": instance_type,
        "SecurityGroupIds": [security_group],
        "UserData": _encode(user_data),
    }
    if key_name:
        spec["KeyName"] = key_name
    result = remote.call(
        "ec2",
        "request_spot_instances",
        SpotPrice=str(price),
        InstanceCount=1,
        LaunchSpecification=spec,
    )
    return [
        r["SpotInstanceRequestId"] for r in result.get("SpotInstanceRequests", [])
    ]


def cancel_spot_request(remote: RemoteClient, request_id: str) -> dict:
    return remote.call(
        "ec2", "cancel_spot_instance_requests", SpotInstanceRequestIds=[request_id]
    )


def create_image(remote: RemoteClient, instance_id: str, name: str) -> Optional[str]:
    result = remote.call("ec2", "create_image", InstanceId=instance_id, Name=name)
    return result.get("ImageId")


def delete_image(remote: RemoteClient, image_id: str) -> dict:
    return remote.call("ec2", "deregister_image", ImageId=image_id)


def create_volume(
    remote: RemoteClient,
    availability_zone: str,
    size: Optional[int] = None,
    snapshot_id: Optional[str] = None,
) -> Optional[str]:
    kwargs = {"AvailabilityZone": availability_zone, "VolumeType": "standard"}
    if size is not None:
        kwargs["Size"] = size
    if snapshot_id is not None:
        kwargs["SnapshotId"] = snapshot_id
    return remote.call("ec2", "create_volume", **kwargs).get("VolumeId")


def delete_volume(remote: RemoteClient, volume_id: str) -> dict:
    return remote.call("ec2", "delete_volume", VolumeId=volume_id)


def attach_volume(
    remote: RemoteClient, volume_id: str, instance_id: str, device: str
) -> dict:
    return remote.call(
        "ec2",
        "attach_volume",
        VolumeId=volume_id,
        InstanceId=instance_id,
        Device=device,
    )


def detach_volume(remote: RemoteClient, volume_id: str) -> dict:
    return remote.call("ec2", "detach_volume", VolumeId=volume_id)


def volume_size(remote: RemoteClient, volume_id: str) -> int:
    """Current size of a volume in GiB."""
    result = remote.call("ec2", "describe_volumes", VolumeIds=[volume_id])
    return result["Volumes"][0]["Size"]


def modify_volume(remote: RemoteClient, volume_id: str, size: int) -> dict:
    return remote.call("ec2", "modify_volume", VolumeId=volume_id, Size=size)


def create_snapshot(
    remote: RemoteClient, volume_id: str, tags: Dict[str, str]
) -> Optional[str]:
    kwargs = {"VolumeId": volume_id}
    if tags:
        kwargs["TagSpecifications"] = [
            {"ResourceType": "snapshot", "Tags": _tag_list(tags)}
        ]
    return remote.call("ec2", "create_snapshot", **kwargs).get("SnapshotId")


def delete_snapshot(remote: RemoteClient, snapshot_id: str) -> dict:
    return remote.call("ec2", "delete_snapshot", SnapshotId=snapshot_id)
