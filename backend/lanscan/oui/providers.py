"""
External manufacturer lookup providers.

Each provider answers one identifier with a manufacturer name, ``None`` when
the service has no entry, or raises ``ProviderError`` when the call itself
failed (timeout, connection error, rate limit, unexpected status).
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

import aiohttp

from ..core.exceptions import ProviderError

logger = logging.getLogger(__name__)

USER_AGENT = "LAN-Scan/1.0"

# Names services return instead of a real vendor
PLACEHOLDER_NAMES = {"", "N/A", "NA", "NONE", "NULL", "UNKNOWN", "(UNKNOWN)", "NOT FOUND", "-"}


def is_placeholder(name: Optional[str]) -> bool:
    return name is None or name.strip().upper() in PLACEHOLDER_NAMES


@dataclass
class ProviderResult:
    """Manufacturer reported by an external provider."""
    manufacturer: str
    source: str
    device_category: str = "API Detected"


class LookupProvider:
    """Base class for HTTP lookup providers."""

    name = "base"

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout

    def url_for(self, identifier: str) -> str:
        raise NotImplementedError

    def parse(self, status: int, body: str) -> Optional[ProviderResult]:
        raise NotImplementedError

    async def lookup(self, identifier: str) -> Optional[ProviderResult]:
        try:
            async with aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"User-Agent": USER_AGENT},
            ) as session:
                async with session.get(self.url_for(identifier)) as response:
                    body = await response.text()
                    return self.parse(response.status, body)
        except asyncio.TimeoutError as e:
            raise ProviderError(self.name, f"timed out after {self.timeout}s") from e
        except aiohttp.ClientError as e:
            raise ProviderError(self.name, str(e) or type(e).__name__) from e

    def __repr__(self):
        return f"<{type(self).__name__}(timeout={self.timeout})>"


class MacVendorsProvider(LookupProvider):
    """api.macvendors.com: plain text vendor name, 404 when unknown."""

    name = "macvendors"
    base_url = "https://api.macvendors.com/"

    def url_for(self, identifier: str) -> str:
        return f"{self.base_url}{identifier}"

    def parse(self, status: int, body: str) -> Optional[ProviderResult]:
        if status == 404:
            return None
        if status == 429:
            raise ProviderError(self.name, "rate limited")
        if status != 200:
            raise ProviderError(self.name, f"unexpected status {status}")

        manufacturer = body.strip()
        # Error payloads are JSON objects even with a 200 on some proxies
        if manufacturer.startswith("{") or is_placeholder(manufacturer):
            return None
        return ProviderResult(manufacturer=manufacturer, source="macvendors_api")


class MacLookupProvider(LookupProvider):
    """api.maclookup.app v2: JSON with ``found`` and ``company`` fields."""

    name = "maclookup"
    base_url = "https://api.maclookup.app/v2/macs/"

    def __init__(self, timeout: float = 5.0, api_key: Optional[str] = None):
        super().__init__(timeout)
        self.api_key = api_key

    def url_for(self, identifier: str) -> str:
        url = f"{self.base_url}{identifier}"
        if self.api_key:
            url += f"?apiKey={self.api_key}"
        return url

    def parse(self, status: int, body: str) -> Optional[ProviderResult]:
        if status == 429:
            raise ProviderError(self.name, "rate limited")
        if status != 200:
            raise ProviderError(self.name, f"unexpected status {status}")

        try:
            data = json.loads(body)
        except json.JSONDecodeError as e:
            raise ProviderError(self.name, f"invalid JSON: {e}") from e

        if not data.get("found", True):
            return None
        company = data.get("company")
        if is_placeholder(company):
            return None
        return ProviderResult(manufacturer=company.strip(), source="maclookup_api")


def build_providers(names: Iterable[str], timeout: float = 5.0,
                    maclookup_api_key: Optional[str] = None) -> List[LookupProvider]:
    """Instantiate providers in the configured priority order."""
    providers: List[LookupProvider] = []
    for name in names:
        if name == MacVendorsProvider.name:
            providers.append(MacVendorsProvider(timeout=timeout))
        elif name == MacLookupProvider.name:
            providers.append(MacLookupProvider(timeout=timeout, api_key=maclookup_api_key))
        else:
            logger.warning("Ignoring unknown lookup provider %r", name)
    return providers
