"""Signal store persistence behaviour."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from sqlalchemy.exc import SQLAlchemyError

from fakes import BrokenRepository, TickingClock, make_item, open_repository

from reelsense.services.repository import SignalRepository
from reelsense.services.signal_store import SignalStore


@pytest.mark.anyio("asyncio")
async def test_record_consumption_is_an_upsert(tmp_path) -> None:
    """Marking the same title twice keeps one record with the latest time."""

    clock = TickingClock()
    async with open_repository(tmp_path) as repository:
        store = SignalStore(repository, "user-1", clock=clock)
        item = make_item(1, genres=[28], rating=8.0)

        assert await store.record_consumption(item) is True
        latest_call = clock.current
        assert await store.record_consumption(item) is True

        records = await store.list_consumption()

    assert len(records) == 1
    assert records[0].identity == (1, "movie")
    assert records[0].consumed_at == latest_call


@pytest.mark.anyio("asyncio")
async def test_record_consumption_replaces_rating_and_completion(tmp_path) -> None:
    async with open_repository(tmp_path) as repository:
        store = SignalStore(repository, "user-1")
        item = make_item(1)
        await store.record_consumption(item, user_rating=2, completion_pct=30)
        await store.record_consumption(item, user_rating=5)

        (record,) = await store.list_consumption()

    assert record.user_rating == 5
    assert record.completion_pct is None


@pytest.mark.anyio("asyncio")
async def test_record_saved_is_insert_if_absent(tmp_path) -> None:
    """Saving the same series twice leaves one watchlist entry."""

    async with open_repository(tmp_path) as repository:
        store = SignalStore(repository, "user-1")
        item = make_item(7, "series", genres=[18])

        assert await store.record_saved(item, priority="high") is True
        assert await store.record_saved(item, priority="low") is True

        saved = await store.list_saved()

    assert [entry.identity for entry in saved] == [(7, "series")]
    assert saved[0].priority == "high"


@pytest.mark.anyio("asyncio")
async def test_identity_includes_content_type(tmp_path) -> None:
    async with open_repository(tmp_path) as repository:
        store = SignalStore(repository, "user-1")
        await store.record_saved(make_item(7, "series"))
        await store.record_saved(make_item(7, "movie"))

        saved = await store.list_saved()

    assert {entry.identity for entry in saved} == {(7, "series"), (7, "movie")}


@pytest.mark.anyio("asyncio")
async def test_remove_saved_only_removes_matching_entry(tmp_path) -> None:
    async with open_repository(tmp_path) as repository:
        store = SignalStore(repository, "user-1")
        await store.record_saved(make_item(7, "series"))
        await store.record_saved(make_item(8, "movie"))

        assert await store.remove_saved(7, "series") is True
        assert await store.remove_saved(99, "movie") is True

        saved = await store.list_saved()

    assert [entry.identity for entry in saved] == [(8, "movie")]


@pytest.mark.anyio("asyncio")
async def test_consumption_is_capacity_bounded(tmp_path) -> None:
    """Oldest consumption entries are evicted once the cap is exceeded."""

    async with open_repository(tmp_path) as repository:
        store = SignalStore(repository, "user-1", capacity=3)
        for content_id in range(1, 6):
            await store.record_consumption(make_item(content_id))

        records = await store.list_consumption()

    assert [record.content_id for record in records] == [3, 4, 5]


@pytest.mark.anyio("asyncio")
async def test_upsert_keeps_insertion_position(tmp_path) -> None:
    async with open_repository(tmp_path) as repository:
        store = SignalStore(repository, "user-1", capacity=3)
        for content_id in (1, 2, 3):
            await store.record_consumption(make_item(content_id))
        # Re-marking the oldest title does not protect it from eviction.
        await store.record_consumption(make_item(1), user_rating=5)
        await store.record_consumption(make_item(4))

        records = await store.list_consumption()

    assert [record.content_id for record in records] == [2, 3, 4]


@pytest.mark.anyio("asyncio")
async def test_reads_are_scoped_per_user(tmp_path) -> None:
    async with open_repository(tmp_path) as repository:
        alice = SignalStore(repository, "alice")
        bob = SignalStore(repository, "bob")
        await alice.record_consumption(make_item(1))
        await alice.record_saved(make_item(2))
        await bob.record_consumption(make_item(3))

        assert [r.content_id for r in await alice.list_consumption()] == [1]
        assert [r.content_id for r in await bob.list_consumption()] == [3]
        assert await bob.list_saved() == []

        assert await alice.clear_all() is True
        assert await alice.list_consumption() == []
        assert await alice.list_saved() == []
        assert [r.content_id for r in await bob.list_consumption()] == [3]


@pytest.mark.anyio("asyncio")
async def test_successful_writes_notify_listener(tmp_path) -> None:
    changes: list[str] = []
    async with open_repository(tmp_path) as repository:
        store = SignalStore(repository, "user-1", on_change=changes.append)
        await store.record_consumption(make_item(1))
        await store.record_saved(make_item(2))
        await store.record_saved(make_item(2))
        await store.remove_saved(404, "movie")
        await store.clear_all()

    # The duplicate save and the no-op removal change nothing.
    assert changes == ["user-1", "user-1", "user-1"]


@pytest.mark.anyio("asyncio")
async def test_unavailable_backend_degrades_to_empty_reads() -> None:
    store = SignalStore(BrokenRepository(), "user-1")

    consumption = await store.load_consumption()
    saved = await store.load_saved()

    assert consumption.items == [] and consumption.available is False
    assert saved.items == [] and saved.available is False
    assert await store.list_consumption() == []


@pytest.mark.anyio("asyncio")
async def test_unavailable_backend_reports_failed_writes() -> None:
    changes: list[str] = []
    store = SignalStore(BrokenRepository(), "user-1", on_change=changes.append)
    item = make_item(1)

    assert await store.record_consumption(item) is False
    assert await store.record_saved(item) is False
    assert await store.remove_saved(1, "movie") is False
    assert await store.clear_all() is False
    assert changes == []


class FailingEvictionRepository(SignalRepository):
    """Repository that fails after the insert, inside the same transaction."""

    @staticmethod
    async def _evict(*args: Any, **kwargs: Any) -> None:
        raise SQLAlchemyError("disk full")


@pytest.mark.anyio("asyncio")
async def test_failed_write_leaves_existing_state_untouched(tmp_path) -> None:
    async with open_repository(tmp_path) as repository:
        store = SignalStore(repository, "user-1", capacity=5)
        await store.record_consumption(make_item(1))

        failing = FailingEvictionRepository(repository._session_factory)
        failing_store = SignalStore(failing, "user-1", capacity=5)
        assert await failing_store.record_consumption(make_item(2)) is False

        records = await store.list_consumption()

    assert [record.content_id for record in records] == [1]


@pytest.mark.anyio("asyncio")
async def test_unreadable_payloads_are_skipped(tmp_path) -> None:
    async with open_repository(tmp_path) as repository:
        store = SignalStore(repository, "user-1")
        await store.record_consumption(make_item(1))
        await repository.put(
            "user-1", "consumption", (2, "movie"), {"content_id": "not-a-number"}
        )

        read = await store.load_consumption()

    assert read.available is True
    assert [record.content_id for record in read.items] == [1]


def test_store_requires_user_id() -> None:
    with pytest.raises(ValueError, match="user id is required"):
        SignalStore(BrokenRepository(), "")


@pytest.mark.anyio("asyncio")
async def test_is_saved_checks_identity(tmp_path) -> None:
    async with open_repository(tmp_path) as repository:
        store = SignalStore(repository, "user-1")
        await store.record_saved(make_item(7, "series"))

        assert await store.is_saved(7, "series") is True
        assert await store.is_saved(7, "movie") is False
        assert await SignalStore(repository, "user-2").is_saved(7, "series") is False

    assert await SignalStore(BrokenRepository(), "user-1").is_saved(7, "series") is False


@pytest.mark.anyio("asyncio")
async def test_invalid_signals_are_rejected_without_raising(tmp_path) -> None:
    changes: list[str] = []
    async with open_repository(tmp_path) as repository:
        store = SignalStore(repository, "user-1", on_change=changes.append)
        # model_copy skips validation, like an item assembled elsewhere.
        overrated = make_item(1).model_copy(update={"rating": 10.5})

        assert await store.record_consumption(overrated) is False
        assert await store.record_consumption(make_item(2), user_rating=0) is False
        assert await store.record_consumption(make_item(3), completion_pct=150) is False
        assert await store.record_saved(make_item(4), priority="urgent") is False  # type: ignore[arg-type]

        assert await store.list_consumption() == []
        assert await store.list_saved() == []

    assert changes == []


@pytest.mark.anyio("asyncio")
async def test_concurrent_saves_of_one_title_all_succeed(tmp_path) -> None:
    async with open_repository(tmp_path) as repository:
        store = SignalStore(repository, "user-1")
        item = make_item(7, "series")

        results = await asyncio.gather(*(store.record_saved(item) for _ in range(5)))
        saved = await store.list_saved()

    assert results == [True] * 5
    assert [entry.identity for entry in saved] == [(7, "series")]


@pytest.mark.anyio("asyncio")
async def test_concurrent_consumption_upserts_keep_one_record(tmp_path) -> None:
    async with open_repository(tmp_path) as repository:
        store = SignalStore(repository, "user-1")
        item = make_item(1)

        results = await asyncio.gather(
            *(store.record_consumption(item, user_rating=rating) for rating in (1, 2, 3, 4, 5))
        )
        records = await store.list_consumption()

    assert results == [True] * 5
    assert len(records) == 1
    assert records[0].user_rating in {1, 2, 3, 4, 5}
