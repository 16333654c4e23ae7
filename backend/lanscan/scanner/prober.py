import asyncio
import logging
import math
import re
import socket
import sys
from typing import AsyncIterator, Callable, Iterable, List, Optional, Sequence

from ..core.exceptions import ProbeTimeout, ValidationError
from ..oui.intelligence import assess_risk_level, infer_capabilities
from ..oui.resolver import ManufacturerResolver, Resolution
from .models import HostRecord, ScanConfig
from .neighbors import NeighborTable

logger = logging.getLogger(__name__)

# Port -> (service, device type hint), checked in this order
COMMON_PORTS = {
    9100: ("jetdirect", "printer"),
    631: ("ipp", "printer"),
    5001: ("synology", "storage"),
    32400: ("plex", "media_server"),
    62078: ("iphone-sync", "mobile"),
    3389: ("rdp", "computer"),
    5900: ("vnc", "computer"),
    548: ("afp", "computer"),
    445: ("smb", "computer"),
    139: ("netbios", "computer"),
}

HOSTNAME_HINTS = [
    (("router", "gateway"), "router"),
    (("printer", "print"), "printer"),
    (("nas", "storage"), "storage"),
    (("iphone", "android", "phone"), "mobile"),
    (("ipad", "tablet"), "tablet"),
    (("roku", "chromecast", "tv"), "tv"),
]

PING_TIME_RE = re.compile(r"time[=<]\s*([\d.]+)\s*ms")

_LANE_DONE = object()


def ping_command(address: str, timeout: float) -> List[str]:
    if sys.platform == "win32":
        return ["ping", "-n", "1", "-w", str(int(timeout * 1000)), address]
    if sys.platform == "darwin":
        # -W is milliseconds on macOS
        return ["ping", "-c", "1", "-W", str(int(timeout * 1000)), address]
    return ["ping", "-c", "1", "-W", str(max(1, math.ceil(timeout))), address]


def parse_ping_time(output: str) -> Optional[float]:
    match = PING_TIME_RE.search(output)
    return float(match.group(1)) if match else None


def infer_device_type(address: str, hostname: Optional[str], open_ports: Sequence[int]) -> str:
    """Device class from hostname keywords, then open ports."""
    if hostname:
        name = hostname.lower()
        for keywords, device_type in HOSTNAME_HINTS:
            if any(k in name for k in keywords):
                return device_type

    for port, (_, device_type) in COMMON_PORTS.items():
        if port in open_ports:
            return device_type
    if 80 in open_ports or 443 in open_ports:
        if address.endswith(".1") or address.endswith(".254"):
            return "router"
        return "server"
    if 22 in open_ports:
        return "server"
    return "unknown"


class HostProber:
    """
    Probes addresses for liveness and enriches live hosts.

    For each address: ping (TCP connect fallback when port probing is on),
    reverse DNS, neighbor table MAC lookup, manufacturer resolution and
    optional port probing. Records are yielded as soon as each host is done.
    """

    def __init__(
        self,
        resolver: Optional[ManufacturerResolver] = None,
        neighbors: Optional[NeighborTable] = None,
        probe_concurrency: int = 16,
        probe_timeout: float = 1.0,
        hostname_timeout: float = 2.0,
        port_timeout: float = 0.5,
        default_ports: Sequence[int] = (22, 80, 443, 8080),
    ):
        self.resolver = resolver
        self.neighbors = neighbors or NeighborTable()
        self.probe_concurrency = max(1, probe_concurrency)
        self.probe_timeout = probe_timeout
        self.hostname_timeout = hostname_timeout
        self.port_timeout = port_timeout
        self.default_ports = list(default_ports)

    @classmethod
    def from_settings(cls, resolver: Optional[ManufacturerResolver], settings) -> "HostProber":
        return cls(
            resolver=resolver,
            neighbors=NeighborTable(timeout=settings.NEIGHBOR_TIMEOUT),
            probe_concurrency=settings.PROBE_CONCURRENCY,
            probe_timeout=settings.PROBE_TIMEOUT,
            hostname_timeout=settings.HOSTNAME_TIMEOUT,
            port_timeout=settings.PORT_TIMEOUT,
            default_ports=settings.DEFAULT_PORTS,
        )

    async def probe(
        self,
        addresses: Iterable[str],
        config: ScanConfig,
        should_stop: Callable[[], bool] = lambda: False,
    ) -> AsyncIterator[HostRecord]:
        """
        Yield a HostRecord per live address, in the order hosts respond.

        ``should_stop`` is checked before each address is started; an
        exception in any probe lane is re-raised here.
        """
        addresses = list(addresses)
        if not addresses:
            return

        remaining = iter(addresses)
        results: asyncio.Queue = asyncio.Queue()

        async def lane():
            try:
                for address in remaining:
                    if should_stop():
                        return
                    record = await self.probe_host(address, config)
                    if record is not None:
                        results.put_nowait(record)
            except Exception as e:
                results.put_nowait(e)
            finally:
                results.put_nowait(_LANE_DONE)

        lanes = [asyncio.create_task(lane()) for _ in range(min(self.probe_concurrency, len(addresses)))]
        running = len(lanes)
        try:
            while running:
                item = await results.get()
                if item is _LANE_DONE:
                    running -= 1
                elif isinstance(item, Exception):
                    raise item
                else:
                    yield item
        finally:
            for task in lanes:
                task.cancel()
            await asyncio.gather(*lanes, return_exceptions=True)

    async def probe_host(self, address: str, config: ScanConfig) -> Optional[HostRecord]:
        """Probe one address. Returns None when the host looks dead."""
        timeout = config.timeout or self.probe_timeout
        ports = (config.ports or self.default_ports) if config.port_probe else []

        try:
            response_time = await self.ping(address, timeout)
        except ProbeTimeout as e:
            logger.debug("%s", e)
            response_time = None

        open_ports: Optional[List[int]] = None
        if response_time is None:
            if not ports:
                return None
            # Hosts that drop ICMP may still accept a TCP connection
            open_ports = await self.scan_ports(address, ports)
            if not open_ports:
                return None
        elif ports:
            open_ports = await self.scan_ports(address, ports)

        hostname = await self.resolve_hostname(address)
        mac = await self.neighbors.lookup(address)
        resolution = await self._resolve_manufacturer(mac) if mac else None

        record = HostRecord(
            ip_address=address,
            hostname=hostname,
            mac_address=mac,
            response_time=response_time,
            open_ports=open_ports or [],
        )
        if resolution is not None:
            record.manufacturer = resolution.manufacturer
            record.device_category = resolution.device_category
            record.confidence = resolution.confidence
            record.confidence_score = resolution.score
            record.source = resolution.source
            if resolution.device_type != "unknown":
                record.device_type = resolution.device_type
        if not record.device_type:
            record.device_type = infer_device_type(address, hostname, record.open_ports)
        record.capabilities = infer_capabilities(record.device_type, record.open_ports)
        record.risk_level = assess_risk_level(record.device_type)
        return record

    async def ping(self, address: str, timeout: float) -> Optional[float]:
        """Round-trip time in ms, or None if the host did not answer."""
        try:
            process = await asyncio.create_subprocess_exec(
                *ping_command(address, timeout),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            logger.warning("ping unavailable: %s", e)
            return None

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout + 1)
        except asyncio.TimeoutError:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
            raise ProbeTimeout(f"ping {address} timed out after {timeout}s")

        if process.returncode != 0:
            return None
        rtt = parse_ping_time(stdout.decode(errors="ignore"))
        return rtt if rtt is not None else 0.0

    async def resolve_hostname(self, address: str) -> Optional[str]:
        """Reverse DNS lookup, bounded by the hostname timeout."""
        loop = asyncio.get_running_loop()
        try:
            hostname, _, _ = await asyncio.wait_for(
                loop.run_in_executor(None, socket.gethostbyaddr, address),
                timeout=self.hostname_timeout,
            )
        except (socket.herror, socket.gaierror, OSError, asyncio.TimeoutError):
            return None
        if not hostname or hostname == address:
            return None
        return hostname

    async def scan_ports(self, address: str, ports: Sequence[int]) -> List[int]:
        """TCP connect to each port; returns the ones that accepted."""

        async def check_port(port: int) -> Optional[int]:
            try:
                _, writer = await asyncio.wait_for(
                    asyncio.open_connection(address, port),
                    timeout=self.port_timeout,
                )
            except (asyncio.TimeoutError, OSError):
                return None
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass
            return port

        results = await asyncio.gather(*[check_port(p) for p in ports])
        return sorted(p for p in results if p is not None)

    async def _resolve_manufacturer(self, mac: str) -> Optional[Resolution]:
        if self.resolver is None:
            return None
        try:
            return await self.resolver.resolve(mac)
        except ValidationError as e:
            logger.debug("Skipping manufacturer lookup for %s: %s", mac, e)
            return None
