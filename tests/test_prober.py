"""Tests for lanscan/scanner/prober.py and lanscan/scanner/neighbors.py"""

import asyncio
from contextlib import aclosing

import pytest

from lanscan.core.exceptions import ProbeTimeout, StoreError
from lanscan.oui.resolver import ManufacturerResolver
from lanscan.scanner.models import HostRecord, ScanConfig
from lanscan.scanner.neighbors import NeighborTable, parse_hardware_address
from lanscan.scanner.prober import HostProber, infer_device_type, parse_ping_time, ping_command

IP_NEIGH_OUTPUT = "192.168.1.20 dev eth0 lladdr b8:27:eb:12:34:56 REACHABLE\n"
ARP_LINUX_OUTPUT = """\
Address                  HWtype  HWaddress           Flags Mask            Iface
192.168.1.20             ether   b8:27:eb:12:34:56   C                     eth0
"""
ARP_MACOS_OUTPUT = "? (192.168.1.20) at 0:1a:2b:3:4d:5e on en0 ifscope [ethernet]\n"
LINUX_PING_OUTPUT = """\
PING 192.168.1.1 (192.168.1.1) 56(84) bytes of data.
64 bytes from 192.168.1.1: icmp_seq=1 ttl=64 time=0.412 ms
"""


class FakeNeighbors:
    def __init__(self, table=None):
        self.table = table or {}

    async def lookup(self, address):
        return self.table.get(address)


class ScriptedProber(HostProber):
    """HostProber with the network calls replaced by lookup tables."""

    def __init__(self, ping_times=None, open_ports=None, hostnames=None, timeouts=(), **kwargs):
        kwargs.setdefault("neighbors", FakeNeighbors())
        super().__init__(**kwargs)
        self.ping_times = ping_times or {}
        self.open_port_map = open_ports or {}
        self.hostnames = hostnames or {}
        self.timeouts = set(timeouts)

    async def ping(self, address, timeout):
        if address in self.timeouts:
            raise ProbeTimeout(f"ping {address} timed out")
        return self.ping_times.get(address)

    async def scan_ports(self, address, ports):
        return [p for p in self.open_port_map.get(address, []) if p in ports]

    async def resolve_hostname(self, address):
        return self.hostnames.get(address)


class TestParsing:

    def test_ping_time_linux(self):
        assert parse_ping_time(LINUX_PING_OUTPUT) == pytest.approx(0.412)

    def test_ping_time_windows(self):
        assert parse_ping_time("Reply from 192.168.1.1: bytes=32 time<1ms TTL=64") == 1.0

    def test_ping_time_missing(self):
        assert parse_ping_time("Request timed out.") is None

    def test_ping_command_has_one_packet_and_target(self):
        args = ping_command("192.168.1.1", 1.0)
        assert args[0] == "ping"
        assert args[-1] == "192.168.1.1"
        assert "1" in args

    @pytest.mark.parametrize("output", [IP_NEIGH_OUTPUT, ARP_LINUX_OUTPUT])
    def test_hardware_address(self, output):
        assert parse_hardware_address(output) == "B8:27:EB:12:34:56"

    def test_hardware_address_macos(self):
        assert parse_hardware_address(ARP_MACOS_OUTPUT) == "00:1A:2B:03:4D:5E"

    def test_incomplete_entry(self):
        assert parse_hardware_address("192.168.1.20 dev eth0 INCOMPLETE\n") is None
        assert parse_hardware_address("? (192.168.1.20) at (incomplete) on en0\n") is None


class TestNeighborTable:

    async def test_falls_back_to_second_command(self):
        table = NeighborTable(commands=[("ip", "neigh", "show", "{address}"), ("arp", "-n", "{address}")])
        seen = []

        async def fake_run(args):
            seen.append(args)
            return "" if args[0] == "ip" else ARP_LINUX_OUTPUT

        table._run = fake_run
        assert await table.lookup("192.168.1.20") == "B8:27:EB:12:34:56"
        assert seen == [["ip", "neigh", "show", "192.168.1.20"], ["arp", "-n", "192.168.1.20"]]

    async def test_no_entry(self):
        table = NeighborTable(commands=[("arp", "-n", "{address}")])

        async def fake_run(args):
            return None

        table._run = fake_run
        assert await table.lookup("192.168.1.20") is None

    async def test_missing_command(self):
        table = NeighborTable(commands=[("lanscan-no-such-command", "{address}")])
        assert await table.lookup("192.168.1.20") is None


class TestInferDeviceType:

    @pytest.mark.parametrize("address,hostname,ports,expected", [
        ("192.168.1.5", "office-printer.lan", [], "printer"),
        ("192.168.1.5", "my-iphone", [], "mobile"),
        ("192.168.1.5", None, [9100], "printer"),
        ("192.168.1.5", None, [5001, 80], "storage"),
        ("192.168.1.5", None, [3389], "computer"),
        ("192.168.1.1", None, [80], "router"),
        ("192.168.1.5", None, [443], "server"),
        ("192.168.1.5", None, [22], "server"),
        ("192.168.1.5", None, [], "unknown"),
    ])
    def test_inference(self, address, hostname, ports, expected):
        assert infer_device_type(address, hostname, ports) == expected


class TestProbeHost:

    async def test_unreachable_host_is_dropped(self):
        prober = ScriptedProber()
        assert await prober.probe_host("192.168.1.5", ScanConfig(range="192.168.1.0/24")) is None

    async def test_probe_timeout_is_swallowed(self):
        prober = ScriptedProber(timeouts=["192.168.1.5"])
        assert await prober.probe_host("192.168.1.5", ScanConfig(range="192.168.1.0/24")) is None

    async def test_tcp_fallback_when_ping_fails(self):
        prober = ScriptedProber(open_ports={"192.168.1.5": [22]})
        config = ScanConfig(range="192.168.1.0/24", port_probe=True, ports=[22, 80])

        record = await prober.probe_host("192.168.1.5", config)
        assert record is not None
        assert record.open_ports == [22]
        assert record.response_time is None

    async def test_enriched_record(self, store):
        await store.upsert_identifier("B8:27:EB", "Raspberry Pi Foundation", "computer", "Raspberry Pi", 85, "seed")
        prober = ScriptedProber(
            resolver=ManufacturerResolver(store),
            neighbors=FakeNeighbors({"192.168.1.20": "B8:27:EB:12:34:56"}),
            ping_times={"192.168.1.20": 0.8},
            open_ports={"192.168.1.20": [22, 80]},
            hostnames={"192.168.1.20": "pi.local"},
        )
        config = ScanConfig(range="192.168.1.0/24", port_probe=True, ports=[22, 80, 443])

        record = await prober.probe_host("192.168.1.20", config)

        assert record.hostname == "pi.local"
        assert record.mac_address == "B8:27:EB:12:34:56"
        assert record.manufacturer == "Raspberry Pi Foundation"
        assert record.device_type == "computer"
        assert record.confidence == "high"
        assert record.confidence_score == 85
        assert record.open_ports == [22, 80]
        assert record.response_time == 0.8
        assert record.capabilities == ["ssh", "web_interface"]
        assert record.risk_level == "low"

    async def test_no_hardware_address_still_emitted(self):
        prober = ScriptedProber(ping_times={"192.168.1.20": 1.0})
        record = await prober.probe_host("192.168.1.20", ScanConfig(range="192.168.1.0/24"))

        assert record.mac_address is None
        assert record.manufacturer is None
        assert record.device_type == "unknown"
        assert record.capabilities == []
        assert record.risk_level == "medium"

    async def test_ports_skipped_without_port_probe(self):
        prober = ScriptedProber(ping_times={"192.168.1.20": 1.0}, open_ports={"192.168.1.20": [22]})
        record = await prober.probe_host("192.168.1.20", ScanConfig(range="192.168.1.0/24"))
        assert record.open_ports == []

    async def test_default_ports_used(self):
        prober = ScriptedProber(
            ping_times={"192.168.1.20": 1.0},
            open_ports={"192.168.1.20": [8080, 9999]},
            default_ports=[8080],
        )
        record = await prober.probe_host("192.168.1.20", ScanConfig(range="192.168.1.0/24", port_probe=True))
        assert record.open_ports == [8080]

    async def test_store_error_propagates(self):
        class BrokenResolver:
            async def resolve(self, identifier):
                raise StoreError("database unavailable")

        prober = ScriptedProber(
            resolver=BrokenResolver(),
            neighbors=FakeNeighbors({"192.168.1.20": "B8:27:EB:12:34:56"}),
            ping_times={"192.168.1.20": 1.0},
        )
        with pytest.raises(StoreError):
            await prober.probe_host("192.168.1.20", ScanConfig(range="192.168.1.0/24"))


class TestProbe:

    async def test_yields_live_hosts_only(self):
        live = {f"10.0.0.{i}": 1.0 for i in (2, 5, 9)}
        prober = ScriptedProber(ping_times=live, probe_concurrency=4)
        addresses = [f"10.0.0.{i}" for i in range(1, 11)]

        async with aclosing(prober.probe(addresses, ScanConfig(range="10.0.0.0/24"))) as hosts:
            found = [h.ip_address async for h in hosts]

        assert sorted(found) == sorted(live)

    async def test_empty_address_list(self):
        prober = ScriptedProber()
        found = [h async for h in prober.probe([], ScanConfig(range="10.0.0.0/24"))]
        assert found == []

    async def test_concurrency_is_bounded(self):
        running = 0
        peak = 0

        class CountingProber(ScriptedProber):
            async def probe_host(self, address, config):
                nonlocal running, peak
                running += 1
                peak = max(peak, running)
                await asyncio.sleep(0.01)
                running -= 1
                return HostRecord(ip_address=address)

        prober = CountingProber(probe_concurrency=3)
        addresses = [f"10.0.0.{i}" for i in range(1, 21)]
        found = [h async for h in prober.probe(addresses, ScanConfig(range="10.0.0.0/24"))]

        assert len(found) == 20
        assert peak == 3

    async def test_stop_is_checked_between_addresses(self):
        probed = []

        class RecordingProber(ScriptedProber):
            async def probe_host(self, address, config):
                probed.append(address)
                return HostRecord(ip_address=address)

        prober = RecordingProber(probe_concurrency=1)
        addresses = [f"10.0.0.{i}" for i in range(1, 11)]
        found = []
        async with aclosing(prober.probe(addresses, ScanConfig(range="10.0.0.0/24"), lambda: len(probed) >= 3)) as hosts:
            async for host in hosts:
                found.append(host)

        assert len(probed) == 3
        assert len(found) == 3

    async def test_lane_failure_is_raised(self):
        class CrashingProber(ScriptedProber):
            async def probe_host(self, address, config):
                if address == "10.0.0.3":
                    raise RuntimeError("boom")
                return None

        prober = CrashingProber(probe_concurrency=2)
        with pytest.raises(RuntimeError):
            async with aclosing(prober.probe([f"10.0.0.{i}" for i in range(1, 6)], ScanConfig(range="10.0.0.0/24"))) as hosts:
                async for _ in hosts:
                    pass
