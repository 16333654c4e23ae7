"""
Tiered manufacturer resolution.

Lookup order, stopping at the first hit:

1. exact prefix in ``oui_lookup``                  -> confidence ``high``
2. pattern the full identifier starts with         -> confidence ``medium``
3. record sharing the first two octets (score -20) -> confidence ``medium``
4. external providers, unless the prefix failed
   within the suppression window                   -> confidence ``api``

A successful external answer is written back as an ``api_cached`` record
(score 75), so the next lookup of the same prefix is an exact hit. When every
tier misses, the identifier is still classified from its first-octet bits.

Concurrent lookups of one unknown prefix share a single provider query.
"""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from ..core.exceptions import ProviderError, ValidationError
from ..db.models import utcnow
from .identifiers import analyze_bits, hex_digits, normalize_identifier, oui_prefix, partial_confidence
from .intelligence import assess_risk_level, infer_capabilities
from .providers import LookupProvider, build_providers, is_placeholder
from .store import IdentifierStore

logger = logging.getLogger(__name__)

# Confidence tiers
CONFIDENCE_HIGH = "high"
CONFIDENCE_MEDIUM = "medium"
CONFIDENCE_API = "api"
CONFIDENCE_NONE = "none"
CONFIDENCE_ERROR = "error"

API_CACHE_SOURCE = "api_cached"
API_CACHE_CONFIDENCE = 75


@dataclass
class Resolution:
    """Answer to "who made this device"."""
    identifier: str
    prefix: str
    manufacturer: Optional[str] = None
    device_type: str = "unknown"
    device_category: Optional[str] = None
    confidence: str = CONFIDENCE_NONE
    score: Optional[int] = None
    source: str = "pattern_analysis"
    locally_administered: bool = False
    multicast: bool = False
    note: Optional[str] = None
    capabilities: List[str] = field(default_factory=list)
    risk_level: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.manufacturer is not None

    @property
    def used_external_call(self) -> bool:
        return self.confidence == CONFIDENCE_API

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)


def with_profile(resolution: Resolution) -> Resolution:
    """Copy with the capabilities and risk level implied by the device type."""
    return dataclasses.replace(
        resolution,
        capabilities=infer_capabilities(resolution.device_type),
        risk_level=assess_risk_level(resolution.device_type),
    )


def infer_device_type(manufacturer: str) -> str:
    """Rough device class from a manufacturer name."""
    mfg = manufacturer.lower()

    if any(x in mfg for x in ("cisco", "netgear", "linksys", "tp-link", "ubiquiti", "mikrotik")):
        return "router"
    if "apple" in mfg:
        if "iphone" in mfg:
            return "mobile"
        if "ipad" in mfg:
            return "tablet"
        return "computer"
    if "samsung" in mfg or ("lg" in mfg and "mobile" in mfg):
        return "mobile"
    if any(x in mfg for x in ("hewlett", "canon", "epson", "brother", "lexmark")) or mfg.startswith("hp "):
        return "printer"
    if "raspberry pi" in mfg:
        return "computer"
    if any(x in mfg for x in ("google", "amazon", "espressif", "tuya", "sonos")):
        return "iot"
    if any(x in mfg for x in ("vmware", "parallels", "xensource")):
        return "virtual"
    return "unknown"


class ManufacturerResolver:
    """Resolves hardware identifiers against the local store, then providers."""

    def __init__(
        self,
        store: IdentifierStore,
        providers: Sequence[LookupProvider] = (),
        failure_window: timedelta = timedelta(hours=1),
        batch_delay: float = 0.1,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.providers = list(providers)
        self.failure_window = failure_window
        self.batch_delay = batch_delay
        self._clock = clock
        self._sleep = sleep
        # prefix -> lookup shared by every caller waiting on that prefix
        self._in_flight: Dict[str, asyncio.Task] = {}

    @classmethod
    def from_settings(cls, store: IdentifierStore, settings) -> "ManufacturerResolver":
        providers = []
        if settings.API_LOOKUPS_ENABLED:
            providers = build_providers(
                settings.API_PROVIDERS,
                timeout=settings.API_TIMEOUT,
                maclookup_api_key=settings.MACLOOKUP_API_KEY,
            )
        return cls(
            store,
            providers,
            failure_window=timedelta(seconds=settings.API_FAILURE_WINDOW_SECONDS),
            batch_delay=settings.API_BATCH_DELAY,
        )

    async def resolve(self, identifier: str) -> Resolution:
        """
        Resolve one identifier through every tier.

        Raises:
            ValidationError: the identifier is not a MAC address or OUI
            StoreError: the identifier database is unavailable
        """
        normalized, digits, prefix = self._normalize(identifier)

        result = await self._resolve_local(normalized, digits, prefix)
        if result is None:
            result = await self._resolve_external(normalized, prefix)
        if result is None:
            result = self._unresolved(normalized, prefix)
        return with_profile(result)

    async def resolve_batch(self, identifiers: Iterable[str]) -> List[Resolution]:
        """
        Resolve many identifiers, local tiers for all of them first.

        External providers are only called for the subset every local tier
        missed, once per distinct prefix, with ``batch_delay`` between calls.
        Malformed entries get a ``confidence="error"`` result instead of
        failing the batch. Results keep the input order.
        """
        identifiers = list(identifiers)
        results: List[Optional[Resolution]] = [None] * len(identifiers)
        normalized: Dict[int, Tuple[str, str, str]] = {}

        for index, identifier in enumerate(identifiers):
            try:
                normalized[index] = self._normalize(identifier)
            except ValidationError as e:
                logger.debug("Batch entry %d rejected: %s", index, e)
                results[index] = self._invalid(identifier, str(e))

        unresolved: List[int] = []
        for index, (full, digits, prefix) in normalized.items():
            results[index] = await self._resolve_local(full, digits, prefix)
            if results[index] is None:
                unresolved.append(index)

        logger.info(
            "Batch lookup: %d resolved locally, %d need API lookup, %d invalid",
            len(normalized) - len(unresolved), len(unresolved), len(identifiers) - len(normalized),
        )

        by_prefix = {}
        calls_made = 0
        for index in unresolved:
            full, _, prefix = normalized[index]
            if prefix not in by_prefix:
                answer = None
                if self.providers and not await self._recently_failed(prefix):
                    if calls_made:
                        await self._sleep(self.batch_delay)
                    calls_made += 1
                    answer = await self._resolve_external(full, prefix)
                by_prefix[prefix] = answer

            answer = by_prefix[prefix]
            if answer is not None:
                results[index] = dataclasses.replace(answer, identifier=full)
            else:
                results[index] = self._unresolved(full, prefix)

        return [r if r.confidence == CONFIDENCE_ERROR else with_profile(r) for r in results]

    def _normalize(self, identifier: str) -> Tuple[str, str, str]:
        return normalize_identifier(identifier), hex_digits(identifier), oui_prefix(identifier)

    async def _resolve_local(self, identifier: str, digits: str, prefix: str) -> Optional[Resolution]:
        bits = analyze_bits(digits)

        record = await self.store.get_exact(prefix)
        if record is not None:
            logger.debug("Local OUI match for %s: %s", identifier, record.manufacturer)
            return Resolution(
                identifier=identifier,
                prefix=prefix,
                manufacturer=record.manufacturer,
                device_type=record.device_type or "unknown",
                device_category=record.device_category,
                confidence=CONFIDENCE_HIGH,
                score=record.confidence,
                source=record.source or "local_db",
                locally_administered=bits.locally_administered,
                multicast=bits.multicast,
            )

        pattern = await self.store.match_pattern(digits)
        if pattern is not None:
            logger.debug("Local pattern match for %s: %s", identifier, pattern.manufacturer)
            return Resolution(
                identifier=identifier,
                prefix=prefix,
                manufacturer=pattern.manufacturer,
                device_type=pattern.device_type or "unknown",
                device_category=pattern.device_category,
                confidence=CONFIDENCE_MEDIUM,
                score=pattern.confidence,
                source="local_pattern",
                locally_administered=bits.locally_administered,
                multicast=bits.multicast,
            )

        partial = await self.store.match_partial(prefix)
        if partial is not None:
            logger.debug("Partial OUI match for %s: %s (%s)", identifier, partial.manufacturer, partial.prefix)
            return Resolution(
                identifier=identifier,
                prefix=prefix,
                manufacturer=partial.manufacturer,
                device_type=partial.device_type or "unknown",
                device_category=partial.device_category,
                confidence=CONFIDENCE_MEDIUM,
                score=partial_confidence(partial.confidence),
                source="local_partial",
                locally_administered=bits.locally_administered,
                multicast=bits.multicast,
                note=f"Matched on shared block {partial.prefix}",
            )

        return None

    async def _resolve_external(self, identifier: str, prefix: str) -> Optional[Resolution]:
        """Provider lookup, joined with any lookup already running for the prefix."""
        if not self.providers:
            return None

        lookup = self._in_flight.get(prefix)
        if lookup is None:
            lookup = asyncio.ensure_future(self._lookup_prefix(identifier, prefix))
            self._in_flight[prefix] = lookup
            lookup.add_done_callback(lambda _: self._in_flight.pop(prefix, None))
        else:
            logger.debug("Joining API lookup already running for %s", prefix)

        # A cancelled caller must not cancel the lookup the others wait on
        answer = await asyncio.shield(lookup)
        if answer is None:
            return None
        return dataclasses.replace(answer, identifier=identifier)

    async def _lookup_prefix(self, identifier: str, prefix: str) -> Optional[Resolution]:
        if await self._recently_failed(prefix):
            logger.debug("Skipping API lookup for %s - recent failure cached", identifier)
            return None
        return await self._query_providers(identifier, prefix)

    async def _recently_failed(self, prefix: str) -> bool:
        return await self.store.has_recent_failure(prefix, self._clock() - self.failure_window)

    async def _query_providers(self, identifier: str, prefix: str) -> Optional[Resolution]:
        tried = []
        for provider in self.providers:
            tried.append(provider.name)
            try:
                answer = await provider.lookup(identifier)
            except ProviderError as e:
                logger.info("API lookup failed for %s: %s", identifier, e)
                continue

            if answer is None or is_placeholder(answer.manufacturer):
                continue

            device_type = infer_device_type(answer.manufacturer)
            await self.store.upsert_identifier(
                prefix,
                answer.manufacturer,
                device_type,
                answer.device_category,
                API_CACHE_CONFIDENCE,
                API_CACHE_SOURCE,
            )
            logger.info("API match found and cached for %s: %s", identifier, answer.manufacturer)

            bits = analyze_bits(prefix)
            return Resolution(
                identifier=identifier,
                prefix=prefix,
                manufacturer=answer.manufacturer,
                device_type=device_type,
                device_category=answer.device_category,
                confidence=CONFIDENCE_API,
                score=API_CACHE_CONFIDENCE,
                source=answer.source,
                locally_administered=bits.locally_administered,
                multicast=bits.multicast,
            )

        await self.store.record_failure(prefix, self._clock(), tried)
        logger.info("All API lookups failed for %s, cached failure", identifier)
        return None

    def _invalid(self, identifier: str, reason: str) -> Resolution:
        return Resolution(
            identifier=identifier,
            prefix="",
            confidence=CONFIDENCE_ERROR,
            source="invalid",
            note=reason,
        )

    def _unresolved(self, identifier: str, prefix: str) -> Resolution:
        bits = analyze_bits(prefix)
        return Resolution(
            identifier=identifier,
            prefix=prefix,
            device_type=bits.device_type,
            confidence=CONFIDENCE_NONE,
            source="pattern_analysis",
            locally_administered=bits.locally_administered,
            multicast=bits.multicast,
            note=bits.note,
        )
