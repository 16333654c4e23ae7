"""
Hardware identifier (MAC address) normalization.

Accepts every format seen in neighbor tables, vendor exports and user input:
colon or dash separated (``00:1a:2b:3c:4d:5e``), macOS style without leading
zeros (``0:1a:2b:3c:4d:5e``), Cisco dotted (``001a.2b3c.4d5e``), plain hex,
space separated, and OUI-only forms of each. ``X`` placeholders, as used by
vendor documentation (``CE:9E:43:XX:XX:XX``), read as ``0``.
"""

import re
from dataclasses import dataclass
from typing import Optional

from ..core.exceptions import ValidationError

_HEX_RE = re.compile(r"^[0-9A-F]+$")
_SEPARATOR_RE = re.compile(r"[:\-\s]+")

# Bits of the first octet
LOCALLY_ADMINISTERED_BIT = 0x02
MULTICAST_BIT = 0x01


def hex_digits(identifier: str) -> str:
    """Return the identifier as 6 or 12 uppercase hex digits."""
    if not identifier or not identifier.strip():
        raise ValidationError("Empty hardware identifier")

    raw = identifier.strip().upper()
    parts = _SEPARATOR_RE.split(raw)
    if len(parts) in (3, 6) and all(1 <= len(p) <= 2 for p in parts):
        raw = "".join(p.zfill(2) for p in parts)
    else:
        raw = "".join(parts).replace(".", "")
    raw = raw.replace("X", "0")

    if len(raw) not in (6, 12) or not _HEX_RE.match(raw):
        raise ValidationError(f"Unknown hardware identifier format: {identifier}")
    return raw


def _with_colons(digits: str) -> str:
    return ":".join(digits[i:i + 2] for i in range(0, len(digits), 2))


def normalize_identifier(identifier: str) -> str:
    """Canonical colon-delimited uppercase form (full address or OUI only)."""
    return _with_colons(hex_digits(identifier))


def oui_prefix(identifier: str) -> str:
    """First three octets, e.g. ``00:1A:2B``."""
    return _with_colons(hex_digits(identifier)[:6])


def partial_key(prefix: str) -> str:
    """First two octets of a normalized prefix, e.g. ``00:1A``."""
    return prefix[:5]


def partial_confidence(stored: Optional[int]) -> int:
    """Confidence of a two-octet match: stored minus 20, floored at 30."""
    base = 50 if stored is None else stored
    return max(30, base - 20)


@dataclass(frozen=True)
class BitAnalysis:
    """Structural flags carried by the first octet."""

    locally_administered: bool
    multicast: bool

    @property
    def device_type(self) -> str:
        if self.locally_administered:
            return "virtual"
        if self.multicast:
            return "multicast"
        return "unknown"

    @property
    def note(self) -> Optional[str]:
        if self.multicast:
            return "Multicast MAC address"
        if self.locally_administered:
            return "Locally administered MAC address (likely virtual or randomized)"
        return None


def analyze_bits(identifier: str) -> BitAnalysis:
    first_octet = int(hex_digits(identifier)[:2], 16)
    return BitAnalysis(
        locally_administered=bool(first_octet & LOCALLY_ADMINISTERED_BIT),
        multicast=bool(first_octet & MULTICAST_BIT),
    )
