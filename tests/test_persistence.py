"""Tests for the detection metadata store."""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from chatshield.pii.persistence import InMemoryDetectionStore
from chatshield.pii.types import Detection


class TestInMemoryDetectionStore:
    """Test InMemoryDetectionStore."""

    @pytest.mark.asyncio
    async def test_persist_and_read_sorted(self):
        store = InMemoryDetectionStore()
        inserted = await store.persist(
            "m1", [Detection.create("phone", 20, 32), Detection.create("email", 0, 6, confidence=1.0)]
        )
        assert inserted == 2

        rows = await store.get_by_message("m1")
        assert [(r.pii_type, r.start_offset) for r in rows] == [("email", 0), ("phone", 20)]
        assert rows[0].confidence == 1.0
        assert rows[0].to_detection() == Detection.create("email", 0, 6, confidence=1.0)

    @pytest.mark.asyncio
    async def test_duplicates_skipped(self):
        """Rows identical on (type, start, end) are inserted once."""
        store = InMemoryDetectionStore()
        await store.persist("m1", [Detection.create("email", 0, 6)])
        inserted = await store.persist(
            "m1", [Detection.create("email", 0, 6), Detection.create("email", 10, 16)]
        )
        assert inserted == 1
        assert len(await store.get_by_message("m1")) == 2

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        assert await InMemoryDetectionStore().persist("m1", []) == 0

    @pytest.mark.asyncio
    async def test_persist_never_raises(self):
        """Storage failures are logged and reported as zero rows."""
        store = InMemoryDetectionStore()
        with patch("chatshield.pii.persistence.StoredDetection", side_effect=RuntimeError("disk full")):
            assert await store.persist("m1", [Detection.create("email", 0, 6)]) == 0

    @pytest.mark.asyncio
    async def test_query_filters(self):
        store = InMemoryDetectionStore()
        await store.persist("m1", [Detection.create("email", 0, 6), Detection.create("name", 8, 11)])
        await store.persist("m2", [Detection.create("email", 3, 9)])

        assert len(await store.query()) == 3
        assert len(await store.query(message_ids=["m2"])) == 1
        emails = await store.query(pii_type="email")
        assert {r.message_id for r in emails} == {"m1", "m2"}

        future = datetime.now(timezone.utc) + timedelta(hours=1)
        assert await store.query(since=future) == []
        assert len(await store.query(until=future)) == 3

    @pytest.mark.asyncio
    async def test_query_newest_first(self):
        store = InMemoryDetectionStore()
        await store.persist("m1", [Detection.create("email", 0, 6)])
        await store.persist("m2", [Detection.create("email", 0, 6)])
        rows = await store.query()
        assert rows[0].created_at >= rows[1].created_at

    @pytest.mark.asyncio
    async def test_delete_for_message(self):
        store = InMemoryDetectionStore()
        await store.persist("m1", [Detection.create("email", 0, 6), Detection.create("ip", 10, 17)])
        assert await store.delete_for_message("m1") == 2
        assert await store.get_by_message("m1") == []
        assert await store.delete_for_message("m1") == 0
