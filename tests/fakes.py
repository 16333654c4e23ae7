"""Fake collaborators for testing LAN Scan.

Provides stand-ins for the external lookup providers, the wall clock and
the host prober so tests never touch the network.

Usage:
    from tests.fakes import FakeProvider, FakeProber

    provider = FakeProvider(answers={"00:1A:2B": "Acme"})
"""

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Set

from lanscan.core.exceptions import ProviderError
from lanscan.oui.providers import LookupProvider, ProviderResult
from lanscan.scanner.models import HostRecord, ScanConfig


class FakeProvider(LookupProvider):
    """Provider answering from a dict of prefix -> manufacturer."""

    def __init__(self, name: str = "fake", answers: Optional[Dict[str, str]] = None, fail: bool = False):
        super().__init__(timeout=1.0)
        self.name = name
        self.answers = answers or {}
        self.fail = fail
        self.calls: List[str] = []

    async def lookup(self, identifier: str) -> Optional[ProviderResult]:
        self.calls.append(identifier)
        if self.fail:
            raise ProviderError(self.name, "connection refused")
        manufacturer = self.answers.get(identifier[:8])
        if manufacturer is None:
            return None
        return ProviderResult(manufacturer=manufacturer, source=f"{self.name}_api")


class FakeClock:
    """Settable clock for failure-window tests."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeProber:
    """
    Stands in for HostProber.

    ``live`` lists the addresses that answer. Chunks whose first address is
    in ``gates`` block before probing until the gate's event is set (or the
    scan is stopped); ``faults`` lists addresses that raise.
    """

    def __init__(self, live: Iterable[str] = (), faults: Iterable[str] = ()):
        self.live: Set[str] = set(live)
        self.faults: Set[str] = set(faults)
        self.gates: Dict[str, asyncio.Event] = {}
        self.entered: Dict[str, asyncio.Event] = {}
        self.probed: List[str] = []

    def gate(self, first_address: str) -> asyncio.Event:
        self.gates[first_address] = asyncio.Event()
        self.entered[first_address] = asyncio.Event()
        return self.gates[first_address]

    async def probe(self, addresses, config: ScanConfig, should_stop: Callable[[], bool] = lambda: False):
        addresses = list(addresses)
        if addresses and addresses[0] in self.gates:
            self.entered[addresses[0]].set()
            while not self.gates[addresses[0]].is_set() and not should_stop():
                await asyncio.sleep(0.01)

        for address in addresses:
            if should_stop():
                return
            await asyncio.sleep(0)
            self.probed.append(address)
            if address in self.faults:
                raise RuntimeError(f"probe crashed on {address}")
            if address in self.live:
                yield HostRecord(ip_address=address, mac_address="B8:27:EB:00:00:01", response_time=1.5)


