"""
provider.py - External property-data providers.

The core only depends on the contract:

    await provider.lookup(address) -> ProviderResponse(success, data, error)

with transport-level faults (timeouts, connection errors, 5xx, rate limits)
raised as ProviderTransportError so they can never be mistaken for an
answer. HttpPropertyProvider speaks to a RapidAPI-hosted Zillow-style
``/search_address`` endpoint; StubPropertyProvider is an offline stand-in
for development and tests.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger("provider")

DEFAULT_PROVIDER_URL = "https://zillow56.p.rapidapi.com"
DEFAULT_PROVIDER_TIMEOUT = 10.0
API_KEY_ENV = "RAPIDAPI_KEY"
USER_AGENT = "searchcredits/0.1"


class ProviderTransportError(Exception):
    """The provider could not be reached or did not answer in time."""


@dataclass
class ProviderResponse:
    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error: str = ""


class PropertyDataProvider:
    """Interface for smart-search data sources."""

    name = "provider"

    async def lookup(self, address: str) -> ProviderResponse:
        raise NotImplementedError

    async def aclose(self):
        pass


class HttpPropertyProvider(PropertyDataProvider):
    """Property lookups over HTTP with a bounded timeout."""

    name = "http"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_PROVIDER_URL,
        timeout: float = DEFAULT_PROVIDER_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        api_key = (api_key if api_key is not None else os.environ.get(API_KEY_ENV, "")).strip()
        if not api_key:
            raise ValueError(f"{API_KEY_ENV} is not configured")
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self.base_url = base_url.rstrip("/")
        self._host = httpx.URL(self.base_url).host
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            headers={
                "x-rapidapi-host": self._host,
                "x-rapidapi-key": api_key,
                "User-Agent": USER_AGENT,
            },
            transport=transport,
        )

    async def lookup(self, address: str) -> ProviderResponse:
        try:
            response = await self._client.get("/search_address", params={"address": address})
        except httpx.TimeoutException as e:
            raise ProviderTransportError(f"Provider timed out: {e}") from e
        except httpx.TransportError as e:
            raise ProviderTransportError(f"Provider unreachable: {e}") from e

        if response.status_code == 429:
            raise ProviderTransportError("Rate limit exceeded. Please try again in a few minutes.")
        if response.status_code >= 500:
            raise ProviderTransportError(f"Provider error: {response.status_code} {response.reason_phrase}")
        if response.status_code >= 400:
            return ProviderResponse(success=False, error=f"{response.status_code} {response.reason_phrase}")

        try:
            body = response.json()
        except ValueError as e:
            raise ProviderTransportError("Provider returned a malformed body") from e

        if not isinstance(body, dict):
            return ProviderResponse(success=False, error="Unexpected response shape")
        if body.get("error"):
            return ProviderResponse(success=False, error=str(body["error"]))
        if not body:
            return ProviderResponse(success=False, error="No property data for address")
        logger.debug("Provider answered for %r", address)
        return ProviderResponse(success=True, data=body)

    async def aclose(self):
        await self._client.aclose()


class StubPropertyProvider(PropertyDataProvider):
    """Deterministic offline provider.

    ``mode`` is one of "success", "not_found" or "unavailable". Addresses
    listed in ``not_found`` report failure even in success mode.
    """

    name = "stub"

    MODES = ("success", "not_found", "unavailable")

    def __init__(self, mode: str = "success", not_found: Optional[set] = None):
        if mode not in self.MODES:
            raise ValueError(f"mode must be one of {', '.join(self.MODES)}")
        self.mode = mode
        self.not_found = {a.casefold() for a in (not_found or set())}
        self.calls = 0

    async def lookup(self, address: str) -> ProviderResponse:
        self.calls += 1
        if self.mode == "unavailable":
            raise ProviderTransportError("Stub provider is offline")
        if self.mode == "not_found" or address.strip().casefold() in self.not_found:
            return ProviderResponse(success=False, error="address not found")
        seed = sum(address.encode("utf-8"))
        return ProviderResponse(success=True, data={
            "address": address,
            "propertyType": "SINGLE_FAMILY",
            "bedrooms": 2 + seed % 4,
            "bathrooms": 1 + seed % 3,
            "livingArea": 900 + seed % 2000,
            "yearBuilt": 1920 + seed % 100,
            "zestimate": 150000 + (seed % 500) * 1000,
        })
