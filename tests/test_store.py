"""Tests for lanscan/oui/store.py"""

from datetime import datetime, timedelta

from lanscan.db.models import utcnow


class TestIdentifierUpsert:

    async def test_insert_then_read(self, store):
        assert await store.upsert_identifier("00:1B:63", "Apple Inc.", "computer", "Mac", 85, "seed")

        record = await store.get_exact("00:1B:63")
        assert record.manufacturer == "Apple Inc."
        assert record.confidence == 85
        assert record.source == "seed"

    async def test_equal_trust_replaces(self, store):
        await store.upsert_identifier("00:1B:63", "Apple", None, None, 80, "vendor_db")
        assert await store.upsert_identifier("00:1B:63", "Apple Inc.", "computer", None, 80, "manual")

        record = await store.get_exact("00:1B:63")
        assert record.manufacturer == "Apple Inc."
        assert record.source == "manual"

    async def test_lower_trust_is_ignored(self, store):
        await store.upsert_identifier("00:1B:63", "Apple Inc.", "computer", None, 90, "ieee")
        assert not await store.upsert_identifier("00:1B:63", "Apple", None, None, 75, "api_cached")
        assert (await store.get_exact("00:1B:63")).source == "ieee"

    async def test_bulk_upsert(self, store):
        entries = [
            {"prefix": f"00:00:{i:02X}", "manufacturer": f"Vendor {i}", "confidence": 80, "source": "vendor_db"}
            for i in range(120)
        ]
        assert await store.bulk_upsert(entries) == 120
        assert await store.count() == 120

    async def test_bulk_upsert_empty(self, store):
        assert await store.bulk_upsert([]) == 0


class TestLookups:

    async def test_get_exact_missing(self, store):
        assert await store.get_exact("00:00:00") is None

    async def test_match_partial_prefers_confidence(self, store):
        await store.upsert_identifier("B8:27:EB", "Raspberry Pi Foundation", None, None, 85, "seed")
        await store.upsert_identifier("B8:27:01", "Other Vendor", None, None, 60, "manual")

        match = await store.match_partial("B8:27:FF")
        assert match.prefix == "B8:27:EB"

    async def test_match_partial_requires_two_octets(self, store):
        await store.upsert_identifier("B8:27:EB", "Raspberry Pi Foundation", None, None, 85, "seed")
        assert await store.match_partial("B8:28:EB") is None

    async def test_pattern_confidence_capped(self, store):
        await store.upsert_pattern("001122", "Pattern Vendor", confidence=95)
        pattern = await store.match_pattern("001122334455")
        assert pattern.confidence == 70

    async def test_bulk_patterns(self, store):
        count = await store.bulk_upsert_patterns([
            {"pattern": "70B3D5123", "manufacturer": "Small Block Vendor"},
            {"pattern": "0055DA1", "manufacturer": "Medium Block Vendor", "confidence": 99},
        ])
        assert count == 2

        pattern = await store.match_pattern("0055DA1ABCDE")
        assert pattern.manufacturer == "Medium Block Vendor"
        assert pattern.confidence == 70


class TestFailureCache:

    async def test_recent_failure(self, store):
        now = utcnow()
        await store.record_failure("AC:DE:48", now, ["macvendors", "maclookup"])

        assert await store.has_recent_failure("AC:DE:48", now - timedelta(hours=1))
        assert not await store.has_recent_failure("AC:DE:49", now - timedelta(hours=1))

    async def test_old_failure_is_ignored(self, store):
        then = datetime(2026, 1, 1, 10, 0, 0)
        await store.record_failure("AC:DE:48", then)
        assert not await store.has_recent_failure("AC:DE:48", then + timedelta(seconds=1))


class TestCoverage:

    async def test_empty_database(self, store):
        stats = await store.coverage()
        assert stats["total_entries"] == 0
        assert stats["local_coverage_percentage"] == 0.0

    async def test_composition(self, store):
        await store.upsert_identifier("00:00:01", "Vendor A", None, None, 90, "ieee")
        await store.upsert_identifier("00:00:02", "Vendor A", None, None, 85, "seed")
        await store.upsert_identifier("00:00:03", "Vendor B", None, None, 75, "api_cached")
        await store.upsert_identifier("00:00:04", "Vendor C", None, None, 80, "vendor_db")
        await store.upsert_pattern("005056", "VMware Inc.")

        stats = await store.coverage(high_confidence_threshold=80)

        assert stats["total_entries"] == 4
        assert stats["unique_manufacturers"] == 3
        assert stats["pattern_entries"] == 1
        assert stats["entries_by_source"] == {"ieee": 1, "seed": 1, "api_cached": 1, "vendor_db": 1}
        assert stats["api_cached_entries"] == 1
        assert stats["high_confidence_entries"] == 3
        assert stats["local_coverage_percentage"] == 75.0
        assert stats["high_confidence_percentage"] == 75.0


class TestListingAndSearch:

    async def seed(self, store):
        await store.bulk_upsert([
            {"prefix": "00:1B:63", "manufacturer": "Apple Inc.", "device_type": "computer", "confidence": 80},
            {"prefix": "00:03:93", "manufacturer": "Apple Inc.", "device_type": "computer", "confidence": 90},
            {"prefix": "00:50:56", "manufacturer": "VMware, Inc.", "device_type": "virtual", "confidence": 85},
            {"prefix": "00:00:0C", "manufacturer": "Cisco Systems", "device_type": "router", "confidence": 85},
            {"prefix": "AC:DE:48", "manufacturer": "Acme Corp", "confidence": 75},
        ])

    async def test_list_manufacturers(self, store):
        await self.seed(store)

        assert await store.list_manufacturers() == [
            {"manufacturer": "Acme Corp", "device_count": 1},
            {"manufacturer": "Apple Inc.", "device_count": 2},
            {"manufacturer": "Cisco Systems", "device_count": 1},
            {"manufacturer": "VMware, Inc.", "device_count": 1},
        ]

    async def test_list_device_types_skips_untyped(self, store):
        await self.seed(store)

        assert await store.list_device_types() == [
            {"device_type": "computer", "count": 2},
            {"device_type": "router", "count": 1},
            {"device_type": "virtual", "count": 1},
        ]

    async def test_search_manufacturer_is_case_insensitive_and_ordered(self, store):
        await self.seed(store)

        records = await store.search_manufacturer("apple")

        assert [r.prefix for r in records] == ["00:03:93", "00:1B:63"]

    async def test_search_manufacturer_limit(self, store):
        await store.bulk_upsert([
            {"prefix": f"00:00:{i:02X}", "manufacturer": f"Vendor {i}"} for i in range(60)
        ])

        assert len(await store.search_manufacturer("vendor")) == 50
        assert len(await store.search_manufacturer("vendor", limit=5)) == 5
        assert await store.search_manufacturer("nobody") == []

    async def test_search_device_type_ordered_by_manufacturer(self, store):
        await self.seed(store)
        await store.upsert_identifier("00:11:22", "Zebra Tech", "router", None, 80, "manual")

        records = await store.search_device_type("router")

        assert [r.manufacturer for r in records] == ["Cisco Systems", "Zebra Tech"]
        assert await store.search_device_type("printer") == []

    async def test_search_device_type_limit(self, store):
        await store.bulk_upsert([
            {"prefix": f"00:01:{i:02X}", "manufacturer": f"Vendor {i:03d}", "device_type": "iot"}
            for i in range(120)
        ])

        records = await store.search_device_type("iot")

        assert len(records) == 100
        assert records[0].manufacturer == "Vendor 000"
