"""
executor.py - Search executor.

basic() is a free local lookup that always succeeds. smart() asks the
external provider and folds whatever happens into exactly one of three
outcomes: provider success, provider-reported failure, or provider
unavailable. A timeout is always "unavailable", never a guess at success.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Optional

from searchcredits.domain import Coordinates, ExecutorOutcome, ExecutorResult
from searchcredits.provider import DEFAULT_PROVIDER_TIMEOUT, ProviderTransportError

if TYPE_CHECKING:
    from searchcredits.provider import PropertyDataProvider

logger = logging.getLogger("executor")

# Provider field -> normalized field; first match wins
PROPERTY_FIELDS = {
    "property_type": ("propertyType", "homeType", "type"),
    "square_footage": ("livingArea", "squareFootage"),
    "bedrooms": ("bedrooms", "beds"),
    "bathrooms": ("bathrooms", "baths"),
    "year_built": ("yearBuilt", "year"),
    "estimated_value": ("zestimate", "estimatedValue", "price"),
    "last_sold_price": ("lastSoldPrice", "soldPrice"),
    "last_sold_date": ("lastSoldDate", "dateSold", "soldDate"),
    "property_tax": ("propertyTaxRate", "propertyTax", "tax"),
    "lot_size": ("lotAreaValue", "lotSize", "lotArea"),
    "neighborhood": ("neighborhood", "area"),
    "school_district": ("schoolDistrict",),
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def extract_property(data: Dict[str, Any]) -> Dict[str, Any]:
    source = data.get("property") if isinstance(data.get("property"), dict) else data
    result = {}
    for name, keys in PROPERTY_FIELDS.items():
        for key in keys:
            if source.get(key) is not None:
                result[name] = source[key]
                break
    return result


class SearchExecutor:
    """Runs basic and smart lookups."""

    def __init__(self, provider: "PropertyDataProvider", timeout: float = DEFAULT_PROVIDER_TIMEOUT):
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self._provider = provider
        self._timeout = timeout

    async def basic(self, address: str) -> ExecutorResult:
        return ExecutorResult(
            outcome=ExecutorOutcome.SUCCESS,
            payload={
                "type": "basic",
                "address": address.strip(),
                "timestamp": _now_iso(),
                "message": "Basic search completed - enhanced data available with smart search",
            },
        )

    async def smart(self, address: str, coordinates: Optional[Coordinates] = None) -> ExecutorResult:
        try:
            response = await asyncio.wait_for(self._provider.lookup(address), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("Provider %s timed out after %.1fs for %r", self._provider.name, self._timeout, address)
            return ExecutorResult(ExecutorOutcome.UNAVAILABLE, error=f"Provider timed out after {self._timeout:.1f}s")
        except ProviderTransportError as e:
            logger.warning("Provider %s unavailable for %r: %s", self._provider.name, address, e)
            return ExecutorResult(ExecutorOutcome.UNAVAILABLE, error=str(e))

        if not response.success:
            logger.info("Provider %s found nothing for %r: %s", self._provider.name, address, response.error)
            return ExecutorResult(ExecutorOutcome.REPORTED_FAILURE, error=response.error or "No property data")

        return ExecutorResult(
            outcome=ExecutorOutcome.SUCCESS,
            payload={
                "type": "smart",
                "address": address.strip(),
                "latitude": coordinates.latitude if coordinates else None,
                "longitude": coordinates.longitude if coordinates else None,
                "timestamp": _now_iso(),
                "provider": self._provider.name,
                "property": extract_property(response.data),
                "raw": response.data,
            },
        )
