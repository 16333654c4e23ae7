"""
Seeding of the identifier database.

Three sources, in increasing trust:

- built-in entries for common home and office vendors (``seed``, 85)
- a maclookup.app JSON export (``vendor_db``, 80); 28 and 36 bit blocks
  (MA-M, MA-S) become prefix patterns since records are keyed by 24 bits
- the IEEE ``oui.txt`` registry (``ieee``, 90)

None of this is needed to scan; it only widens what resolves locally.
"""

import json
import logging
import re
from pathlib import Path
from typing import List, Optional, Tuple

from .identifiers import oui_prefix
from .resolver import infer_device_type
from .store import IdentifierStore

logger = logging.getLogger(__name__)

SEED_CONFIDENCE = 85
VENDOR_DB_CONFIDENCE = 80
IEEE_CONFIDENCE = 90
PATTERN_CONFIDENCE = 70

# (prefix, manufacturer, device_type, device_category)
SEED_IDENTIFIERS = [
    # Apple
    ("00:1B:63", "Apple Inc.", "computer", "Mac"),
    ("00:25:00", "Apple Inc.", "computer", "Mac"),
    ("28:CD:C1", "Apple Inc.", "computer", "Mac"),
    ("14:7D:DA", "Apple Inc.", "mobile", "iPhone"),
    ("64:B9:E8", "Apple Inc.", "mobile", "iPhone"),
    ("B4:F0:AB", "Apple Inc.", "tablet", "iPad"),
    # Cisco
    ("00:0A:B8", "Cisco Systems Inc.", "router", "Enterprise Router"),
    ("00:15:C6", "Cisco Systems Inc.", "switch", "Catalyst Switch"),
    # Samsung
    ("28:18:78", "Samsung Electronics", "mobile", "Galaxy"),
    ("5C:0A:5B", "Samsung Electronics", "mobile", "Galaxy"),
    # Google
    ("F4:F5:D8", "Google Inc.", "iot", "Chromecast"),
    ("54:60:09", "Google Inc.", "iot", "Google Home"),
    # Amazon
    ("EC:FA:BC", "Amazon Technologies Inc.", "iot", "Echo Device"),
    ("44:65:0D", "Amazon Technologies Inc.", "iot", "Fire TV"),
    # Raspberry Pi
    ("B8:27:EB", "Raspberry Pi Foundation", "computer", "Raspberry Pi"),
    ("DC:A6:32", "Raspberry Pi Trading Ltd", "computer", "Raspberry Pi"),
    ("E4:5F:01", "Raspberry Pi Trading Ltd", "computer", "Raspberry Pi"),
    # Microsoft
    ("00:15:5D", "Microsoft Corporation", "virtual", "Hyper-V"),
    ("00:03:FF", "Microsoft Corporation", "computer", "Surface"),
    # Smart home and network gear
    ("00:0E:58", "Sonos Inc.", "iot", "Speaker"),
    ("00:17:88", "Philips Lighting BV", "iot", "Hue Bridge"),
    ("24:0A:C4", "Espressif Inc.", "iot", "ESP32"),
    ("5C:CF:7F", "Espressif Inc.", "iot", "ESP8266"),
    ("00:27:22", "Ubiquiti Networks Inc.", "access_point", "UniFi"),
    ("F0:9F:C2", "Ubiquiti Networks Inc.", "router", "UniFi"),
    ("50:C7:BF", "TP-Link Technologies", "router", "Home Router"),
    ("00:11:32", "Synology Inc.", "storage", "NAS"),
]

# (hex pattern, manufacturer, device_type, device_category)
SEED_PATTERNS = [
    ("00155D", "Microsoft Corporation", "virtual", "Hyper-V"),
    ("005056", "VMware Inc.", "virtual", "VM"),
    ("000C29", "VMware Inc.", "virtual", "VM"),
    ("080027", "Oracle VirtualBox", "virtual", "VM"),
    ("020000", "Docker", "virtual", "Container"),
]

# e.g. "00-00-0C   (hex)		Cisco Systems, Inc"
IEEE_LINE_RE = re.compile(r"^\s*([0-9A-F]{2}-[0-9A-F]{2}-[0-9A-F]{2})\s+\(hex\)\s+(.*)$")


def builtin_identifiers() -> List[dict]:
    return [
        {
            "prefix": prefix,
            "manufacturer": manufacturer,
            "device_type": device_type,
            "device_category": category,
            "confidence": SEED_CONFIDENCE,
            "source": "seed",
        }
        for prefix, manufacturer, device_type, category in SEED_IDENTIFIERS
    ]


def parse_ieee_registry(text: str) -> List[dict]:
    """Parse the IEEE oui.txt registry into identifier rows."""
    entries = {}
    for line in text.splitlines():
        match = IEEE_LINE_RE.match(line)
        if not match:
            continue
        manufacturer = match.group(2).strip()
        if not manufacturer:
            continue
        prefix = match.group(1).replace("-", ":")
        entries[prefix] = {
            "prefix": prefix,
            "manufacturer": manufacturer,
            "device_type": infer_device_type(manufacturer),
            "device_category": "IEEE Registry",
            "confidence": IEEE_CONFIDENCE,
            "source": "ieee",
        }
    return list(entries.values())


def parse_vendor_json(data: list) -> Tuple[List[dict], List[dict]]:
    """
    Split a maclookup.app export into identifier rows and pattern rows.

    Format: ``[{"macPrefix": "00:00:0C", "vendorName": "Cisco Systems, Inc"}, ...]``
    """
    identifiers, patterns = [], []
    for entry in data:
        raw_prefix = entry.get("macPrefix", "")
        vendor = (entry.get("vendorName") or "").strip()
        if not raw_prefix or not vendor:
            continue

        digits = re.sub(r"[^0-9A-Fa-f]", "", raw_prefix).upper()
        if len(digits) == 6:
            identifiers.append({
                "prefix": oui_prefix(digits),
                "manufacturer": vendor,
                "device_type": infer_device_type(vendor),
                "device_category": entry.get("blockType") or None,
                "confidence": VENDOR_DB_CONFIDENCE,
                "source": "vendor_db",
            })
        elif 6 < len(digits) <= 12:
            patterns.append({
                "pattern": digits,
                "manufacturer": vendor,
                "device_type": infer_device_type(vendor),
                "device_category": entry.get("blockType") or None,
                "confidence": PATTERN_CONFIDENCE,
            })
    return identifiers, patterns


def load_vendor_json(path: Path) -> Tuple[List[dict], List[dict]]:
    with open(path, "r") as f:
        return parse_vendor_json(json.load(f))


async def seed_store(
    store: IdentifierStore,
    vendor_database_path: Optional[str] = None,
    ieee_registry_path: Optional[str] = None,
) -> dict:
    """Load built-in entries into an empty store, then any configured files."""
    counts = {"seed": 0, "patterns": 0, "vendor_db": 0, "ieee": 0}

    existing = await store.count()
    if existing == 0:
        counts["seed"] = await store.bulk_upsert(builtin_identifiers())
        for pattern, manufacturer, device_type, category in SEED_PATTERNS:
            await store.upsert_pattern(pattern, manufacturer, device_type, category, PATTERN_CONFIDENCE)
        counts["patterns"] = len(SEED_PATTERNS)
        logger.info("Seeded identifier database with %d entries", counts["seed"])
    else:
        logger.info("Identifier database already contains %d records", existing)

    if vendor_database_path:
        path = Path(vendor_database_path)
        if path.exists():
            try:
                identifiers, patterns = load_vendor_json(path)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Failed to parse vendor database %s: %s", path, e)
            else:
                counts["vendor_db"] = await store.bulk_upsert(identifiers)
                counts["patterns"] += await store.bulk_upsert_patterns(patterns)
                logger.info("Vendor database loaded: %d prefixes, %d patterns", len(identifiers), len(patterns))
        else:
            logger.warning("Vendor database not found at %s", path)

    if ieee_registry_path:
        path = Path(ieee_registry_path)
        if path.exists():
            entries = parse_ieee_registry(path.read_text(encoding="utf-8", errors="replace"))
            counts["ieee"] = await store.bulk_upsert(entries)
            logger.info("IEEE registry loaded: %d prefixes", counts["ieee"])
        else:
            logger.warning("IEEE registry not found at %s", path)

    return counts
