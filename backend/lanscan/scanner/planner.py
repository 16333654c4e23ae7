"""
Partitioning of a target range into scan chunks.

Only usable host addresses are scanned: the network and broadcast addresses
are excluded, so /31 and /32 targets plan to zero chunks. Planning is a pure
function of (network, chunk size).
"""

import ipaddress
from ipaddress import IPv4Address, IPv4Network
from typing import List, Optional

from ..core.exceptions import ValidationError
from .models import Chunk

DEFAULT_CHUNK_SIZE = 64


def parse_target(target_range: str, prefix_length: Optional[int] = None) -> IPv4Network:
    """
    Build the target network from ``"a.b.c.d"`` plus a prefix length, or
    from ``"a.b.c.d/p"``. Host bits are masked off.

    Raises:
        ValidationError: missing, malformed or non-IPv4 range, or a prefix
            length that conflicts with the one in the range
    """
    if not target_range or not target_range.strip():
        raise ValidationError("A target range is required")

    address, _, suffix = target_range.strip().partition("/")
    if suffix:
        try:
            cidr_prefix = int(suffix)
        except ValueError:
            raise ValidationError(f"Invalid prefix length in range: {target_range}")
        if prefix_length is not None and prefix_length != cidr_prefix:
            raise ValidationError(
                f"Prefix length {prefix_length} conflicts with range {target_range}"
            )
        prefix_length = cidr_prefix

    if prefix_length is None:
        raise ValidationError(f"No prefix length given for range: {target_range}")
    if not 0 <= prefix_length <= 32:
        raise ValidationError(f"Prefix length must be between 0 and 32, got {prefix_length}")

    try:
        base = ipaddress.IPv4Address(address.strip())
    except ValueError:
        raise ValidationError(f"Invalid IPv4 address in range: {target_range}")

    return ipaddress.IPv4Network(f"{base}/{prefix_length}", strict=False)


def usable_host_count(network: IPv4Network) -> int:
    if network.prefixlen >= 31:
        return 0
    return network.num_addresses - 2


def plan_chunks(network: IPv4Network, chunk_size: int = DEFAULT_CHUNK_SIZE) -> List[Chunk]:
    """Split the usable hosts of ``network`` into ordered, contiguous chunks."""
    if chunk_size < 1:
        raise ValidationError(f"Chunk size must be positive, got {chunk_size}")
    if usable_host_count(network) == 0:
        return []

    first = int(network.network_address) + 1
    last = int(network.broadcast_address) - 1

    chunks = []
    for index, start in enumerate(range(first, last + 1, chunk_size)):
        end = min(start + chunk_size - 1, last)
        chunks.append(Chunk(index=index, start=IPv4Address(start), end=IPv4Address(end)))
    return chunks
