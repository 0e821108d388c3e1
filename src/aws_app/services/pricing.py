"""On-demand and reserved instance prices from the AWS Pricing API."""

import json
from typing import TYPE_CHECKING, List, Optional

from cachier import cachier

from ..backoff import RemoteClient
from ..logger import logger
from ..table_fields import PriceType
from ..utils import hash_without_clients

if TYPE_CHECKING:
    from ..context import AppContext

HOURS_PER_YEAR = 365 * 24


@cachier(hash_func=hash_without_clients, separate_files=True)
def _get_products(remote: RemoteClient, service_code: str, filters: dict) -> List[dict]:
    """Get products from AWS with auto-paging.

    Args:
        remote: Client used for the paginated calls.
        service_code: AWS ServiceCode, e.g. `AmazonEC2`
        filters: `dict` of key/value pairs for `TERM_MATCH` filters
    """
    matched_filters = [
        {"Type": "TERM_MATCH", "Field": k, "Value": v} for k, v in filters.items()
    ]
    result = remote.paginate(
        "pricing", "get_products", ServiceCode=service_code, Filters=matched_filters
    )
    # return actual list of dicts to be able to cache on disk
    products = [json.loads(p) for p in result.get("PriceList", [])]
    logger.debug("Found %d %s products", len(products), service_code)
    return products


def ec2_products(ctx: "AppContext") -> List[dict]:
    """Linux, shared tenancy EC2 products of the configured region."""
    return _get_products(
        ctx.remote,
        "AmazonEC2",
        {
            "regionCode": ctx.config.aws_region_name,
            "operatingSystem": "Linux",
            "preInstalledSw": "NA",
            "licenseModel": "No License required",
            "capacitystatus": "Used",
            "marketoption": "OnDemand",
            "tenancy": "Shared",
        },
    )


def extract_ondemand_price(terms: dict) -> Optional[float]:
    """Extract the hourly USD on-demand price from AWS Terms object.

    Examples:
        >>> terms = {"OnDemand": {"x": {"priceDimensions": {"y": {"unit": "Hrs", "pricePerUnit": {"USD": "0.096"}}}}}}
        >>> extract_ondemand_price(terms)
        0.096
    """
    for term in terms.get("OnDemand", {}).values():
        for dimension in term.get("priceDimensions", {}).values():
            if dimension.get("unit") == "Hrs" and "USD" in dimension.get(
                "pricePerUnit", {}
            ):
                return float(dimension["pricePerUnit"]["USD"])
    return None


def extract_reserved_price(terms: dict) -> Optional[float]:
    """Extract the effective hourly price of a 1 year, all upfront, standard reservation.

    Examples:
        >>> terms = {"Reserved": {"x": {
        ...     "termAttributes": {"LeaseContractLength": "1yr", "PurchaseOption": "All Upfront", "OfferingClass": "standard"},
        ...     "priceDimensions": {
        ...         "a": {"unit": "Quantity", "pricePerUnit": {"USD": "876"}},
        ...         "b": {"unit": "Hrs", "pricePerUnit": {"USD": "0"}}}}}}
        >>> extract_reserved_price(terms)
        0.1
    """
    for term in terms.get("Reserved", {}).values():
        attributes = term.get("termAttributes", {})
        if (
            attributes.get("LeaseContractLength") != "1yr"
            or attributes.get("PurchaseOption") != "All Upfront"
            or attributes.get("OfferingClass") != "standard"
        ):
            continue
        for dimension in term.get("priceDimensions", {}).values():
            if dimension.get("unit") != "Quantity":
                continue
            upfront = float(dimension.get("pricePerUnit", {}).get("USD", 0))
            if upfront > 0:
                return upfront / HOURS_PER_YEAR
    return None


def _prices(ctx: "AppContext", price_type: PriceType, extract) -> List[dict]:
    prices = {}
    for product in ec2_products(ctx):
        try:
            instance_type = product["product"]["attributes"]["instanceType"]
            price = extract(product["terms"])
        except (KeyError, ValueError) as e:
            logger.debug("Cannot extract %s price: %s", price_type.value, e)
            continue
        if price is None or price == 0:
            continue
        prices[instance_type] = price
    return [
        {"instance_type": k, "price": v, "price_type": price_type}
        for k, v in sorted(prices.items())
    ]


def fetch_ondemand_prices(ctx: "AppContext") -> List[dict]:
    """Hourly on-demand price of each instance type."""
    return _prices(ctx, PriceType.ONDEMAND, extract_ondemand_price)


def fetch_reserved_prices(ctx: "AppContext") -> List[dict]:
    """Effective hourly reserved price of each instance type."""
    return _prices(ctx, PriceType.RESERVED, extract_reserved_price)
