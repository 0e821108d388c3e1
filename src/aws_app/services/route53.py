"""DNS records of the Route53 hosted zones."""

from typing import TYPE_CHECKING, List

from ..backoff import RemoteClient
from ..schemas import ResourceDescriptor
from ..table_fields import ResourceKind

if TYPE_CHECKING:
    from ..context import AppContext

DEFAULT_TTL = 300


def list_records(ctx: "AppContext") -> List[ResourceDescriptor]:
    zones = ctx.remote.paginate("route53", "list_hosted_zones").get("HostedZones", [])
    descriptors = []
    for zone in zones:
        zone_id = zone["Id"].split("/")[-1]
        records = ctx.remote.paginate(
            "route53", "list_resource_record_sets", HostedZoneId=zone_id
        ).get("ResourceRecordSets", [])
        for record in records:
            values = [r["Value"] for r in record.get("ResourceRecords", [])]
            descriptors.append(
                ResourceDescriptor(
                    kind=ResourceKind.ROUTE53,
                    id=f"{zone_id}/{record['Name']}/{record['Type']}",
                    attributes={
                        "zone": zone.get("Name", ""),
                        "name": record["Name"],
                        "type": record["Type"],
                        "values": " ".join(values),
                    },
                    metadata=record,
                )
            )
    return descriptors


def upsert_a_record(
    remote: RemoteClient,
    zone_id: str,
    name: str,
    ip_address: str,
    ttl: int = DEFAULT_TTL,
) -> dict:
    """Create or update the A record of a name in a hosted zone."""
    result = remote.call(
        "route53",
        "change_resource_record_sets",
        HostedZoneId=zone_id,
        ChangeBatch={
            "Changes": [
                {
                    "Action": "UPSERT",
                    "ResourceRecordSet": {
                        "Name": name,
                        "Type": "A",
                        "TTL": ttl,
                        "ResourceRecords": [{"Value": ip_address}],
                    },
                }
            ]
        },
    )
    return result.get("ChangeInfo", {})
