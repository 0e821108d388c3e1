"""Unit tests for the presentation-ready listings."""

from datetime import datetime, timezone

import pytest

from aws_app.aggregate import cheapest, list_resources, page, price_table
from aws_app.insert import append_items, upsert_items, validate_items
from aws_app.table_fields import PriceType, ResourceKind
from aws_app.tables import InstanceFamily, InstanceType, PriceObservation

EARLIER = datetime(2024, 1, 1, tzinfo=timezone.utc)
LATER = datetime(2024, 1, 2, tzinfo=timezone.utc)


@pytest.fixture
def seeded(ctx):
    """Cache Store with a few instance types and two batches of prices."""
    families = [
        {"family_name": "m5", "display_name": "General purpose"},
        {"family_name": "c5", "display_name": "Compute optimized"},
        {"family_name": "m6g", "display_name": "General purpose"},
    ]
    types = [
        ("m5.large", "m5", 2, 8),
        ("m5.xlarge", "m5", 4, 16),
        ("c5.large", "c5", 2, 4),
        ("m6g.large", "m6g", 2, 8),
    ]
    prices = [
        ("m5.large", 0.096, PriceType.ONDEMAND, EARLIER),
        ("m5.xlarge", 0.192, PriceType.ONDEMAND, EARLIER),
        ("c5.large", 0.085, PriceType.ONDEMAND, EARLIER),
        ("m6g.large", 0.077, PriceType.ONDEMAND, EARLIER),
        ("m5.large", 0.100, PriceType.ONDEMAND, LATER),
        # same timestamp, the later observation wins
        ("m5.xlarge", 0.200, PriceType.ONDEMAND, LATER),
        ("m5.xlarge", 0.190, PriceType.ONDEMAND, LATER),
        ("m5.large", 0.035, PriceType.SPOT, LATER),
        ("m5.xlarge", 0.070, PriceType.SPOT, LATER),
    ]
    with ctx.store.transaction() as session:
        upsert_items(InstanceFamily, validate_items(InstanceFamily, families), session)
        upsert_items(
            InstanceType,
            validate_items(
                InstanceType,
                [
                    {
                        "instance_type": t,
                        "family_name": f,
                        "n_cpu": c,
                        "memory_gib": m,
                        "generation": "hvm",
                    }
                    for t, f, c, m in types
                ],
            ),
            session,
        )
        for price in prices:
            append_items(
                PriceObservation,
                validate_items(
                    PriceObservation,
                    [
                        dict(
                            zip(
                                [
                                    "instance_type",
                                    "price",
                                    "price_type",
                                    "price_timestamp",
                                ],
                                price,
                            )
                        )
                    ],
                ),
                session,
            )
    return ctx


class TestCheapest:
    """Tests for listing the most recent prices."""

    def test_family_filter_sorted_by_price(self, seeded):
        rows = cheapest(seeded, "m5", PriceType.ONDEMAND)
        assert [(r.instance_type, r.price) for r in rows] == [
            ("m5.large", 0.100),
            ("m5.xlarge", 0.190),
        ]
        assert all(r.family_name == "m5" for r in rows)
        assert rows[0].price_timestamp == LATER

    def test_all_pricing_models(self, seeded):
        rows = cheapest(seeded, "m5")
        assert [(r.instance_type, r.price_type) for r in rows] == [
            ("m5.large", PriceType.SPOT),
            ("m5.xlarge", PriceType.SPOT),
            ("m5.large", PriceType.ONDEMAND),
            ("m5.xlarge", PriceType.ONDEMAND),
        ]

    def test_case_insensitive_search_and_limit(self, seeded):
        rows = cheapest(seeded, "M", PriceType.ONDEMAND, limit=2)
        assert [r.instance_type for r in rows] == ["m6g.large", "m5.large"]

    def test_no_search(self, seeded):
        rows = cheapest(seeded, price_type=PriceType.ONDEMAND)
        assert len(rows) == 4
        assert [r.price for r in rows] == sorted(r.price for r in rows)

    def test_empty_cache(self, ctx):
        assert cheapest(ctx, "m5") == []


class TestPriceTable:
    def test_sorted_by_capacity(self, seeded):
        rows = price_table(seeded, ["large"])
        assert [r.instance_type for r in rows] == [
            "c5.large",
            "m5.large",
            "m6g.large",
            "m5.xlarge",
        ]
        m5 = rows[1]
        assert (m5.ondemand, m5.spot, m5.reserved) == (0.100, 0.035, None)
        assert m5.display_name == "General purpose"

    def test_several_search_strings(self, seeded):
        rows = price_table(seeded, ["c5.", "m6g"])
        assert [r.instance_type for r in rows] == ["c5.large", "m6g.large"]
        assert rows[0].spot is None


class TestListing:
    """Tests for live and cached listings."""

    def test_listing_is_restartable(self, ctx, aws):
        mock = aws.respond(
            "ec2",
            "describe_volumes",
            {"Volumes": [{"VolumeId": "vol-1", "Size": 8}]},
            {"Volumes": [{"VolumeId": "vol-1", "Size": 8}, {"VolumeId": "vol-2"}]},
        )
        listing = list_resources(ctx, ResourceKind.VOLUME)
        assert [d.id for d in listing] == ["vol-1"]
        assert [d.id for d in listing] == ["vol-1", "vol-2"]
        assert mock.call_count == 2

    def test_live_search(self, ctx, aws):
        aws.respond(
            "ec2",
            "describe_instances",
            {
                "Reservations": [
                    {
                        "Instances": [
                            {"InstanceId": "i-1", "InstanceType": "m5.large"},
                            {"InstanceId": "i-2", "InstanceType": "c5.large"},
                        ]
                    }
                ]
            },
        )
        listing = list_resources(ctx, ResourceKind.INSTANCES, "M5")
        assert [d.id for d in listing] == ["i-1"]
        rendered = list(listing.rendered())
        assert rendered[0]["id"] == "i-1"
        assert rendered[0]["instance_type"] == "m5.large"

    def test_cached_kinds(self, seeded, aws):
        families = list(list_resources(seeded, ResourceKind.INSTANCE_FAMILY, "m"))
        assert [f.family_name for f in families] == ["m5", "m6g"]
        prices = list(list_resources(seeded, "price", "c5").rendered())
        assert prices[0]["price_type"] == "ondemand"
        assert prices[0]["observed_at"].startswith("2024-01-01")
        assert aws.clients == {}

    def test_repr(self, ctx):
        listing = list_resources(ctx, ResourceKind.SNAPSHOT, "db")
        assert repr(listing) == "Listing(kind='snapshot', search='db')"


class TestPage:
    def test_failing_kind_degrades(self, seeded, aws, make_client_error):
        aws.respond("ec2", "describe_volumes", {"Volumes": [{"VolumeId": "vol-1"}]})
        aws.respond("iam", "list_users", make_client_error("AccessDenied"))
        listings = page(
            seeded,
            [ResourceKind.VOLUME, ResourceKind.USER, ResourceKind.INSTANCE_FAMILY],
        )
        assert [listing.kind for listing in listings] == [
            ResourceKind.VOLUME,
            ResourceKind.USER,
            ResourceKind.INSTANCE_FAMILY,
        ]
        volumes, users, families = listings
        assert volumes.rows[0]["id"] == "vol-1" and volumes.error is None
        assert users.rows == [] and "AccessDenied" in users.error
        assert len(families.rows) == 3

    def test_cache_store_error_degrades(self, seeded, aws):
        aws.respond("ec2", "describe_volumes", {"Volumes": [{"VolumeId": "vol-1"}]})
        InstanceType.__table__.drop(seeded.store.engine)
        volumes, types = page(
            seeded, [ResourceKind.VOLUME, ResourceKind.INSTANCE_TYPE]
        )
        assert volumes.rows[0]["id"] == "vol-1" and volumes.error is None
        assert types.rows == []
        assert "instance_list" in types.error
