"""
Hardware address lookup through the operating system's neighbor table.

A reachability probe leaves an entry in the neighbor (ARP) cache, so once a
host answered a ping its MAC address can be read back with ``ip neigh`` on
Linux or ``arp -n`` elsewhere.
"""

import asyncio
import logging
import re
import sys
from typing import List, Optional, Sequence

from ..core.exceptions import ValidationError
from ..oui.identifiers import normalize_identifier

logger = logging.getLogger(__name__)

# Also matches the macOS form without leading zeros (0:1a:2b:3:4d:5e)
MAC_RE = re.compile(r"\b(?:[0-9a-fA-F]{1,2}[:-]){5}[0-9a-fA-F]{1,2}\b")

IGNORED_ADDRESSES = {"00:00:00:00:00:00", "FF:FF:FF:FF:FF:FF"}


def default_commands() -> List[Sequence[str]]:
    if sys.platform.startswith("linux"):
        return [("ip", "neigh", "show", "{address}"), ("arp", "-n", "{address}")]
    return [("arp", "-n", "{address}")]


def parse_hardware_address(output: str) -> Optional[str]:
    """First usable MAC address in command output, normalized."""
    for match in MAC_RE.finditer(output):
        try:
            mac = normalize_identifier(match.group(0))
        except ValidationError:
            continue
        if mac not in IGNORED_ADDRESSES:
            return mac
    return None


class NeighborTable:
    """Reads MAC addresses from the neighbor cache via system commands."""

    def __init__(self, timeout: float = 2.0, commands: Optional[List[Sequence[str]]] = None):
        self.timeout = timeout
        self.commands = commands if commands is not None else default_commands()

    async def lookup(self, address: str) -> Optional[str]:
        for template in self.commands:
            args = [part.format(address=address) for part in template]
            output = await self._run(args)
            if not output:
                continue
            mac = parse_hardware_address(output)
            if mac:
                return mac
        return None

    async def _run(self, args: List[str]) -> Optional[str]:
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            logger.debug("Cannot run %s: %s", args[0], e)
            return None

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.debug("%s timed out after %ss", " ".join(args), self.timeout)
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
            return None

        if process.returncode != 0:
            return None
        return stdout.decode(errors="ignore")
