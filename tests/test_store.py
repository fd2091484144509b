"""Tests for city_race.store.MemoryStore."""

from datetime import datetime

import pytest

from city_race.errors import ConcurrentUpdateConflictError, DocumentNotFoundError
from city_race.store import DocChange, MemoryStore


# ── Reads and writes ────────────────────────────────────────


@pytest.mark.asyncio
async def test_get_missing_returns_none(store):
    assert await store.get("teams", "nope") is None


@pytest.mark.asyncio
async def test_set_then_get_carries_id(store):
    await store.set("teams", "red", {"name": "Red", "currency": 10})
    doc = await store.get("teams", "red")
    assert doc == {"id": "red", "name": "Red", "currency": 10}


@pytest.mark.asyncio
async def test_returned_documents_are_copies(store):
    await store.set("teams", "red", {"progress": {"previous_quests": []}})
    doc = await store.get("teams", "red")
    doc["progress"]["previous_quests"].append("q1")
    assert (await store.get("teams", "red"))["progress"]["previous_quests"] == []


@pytest.mark.asyncio
async def test_add_generates_id(store):
    doc_id = await store.add("messages", {"text": "hi"})
    assert doc_id
    assert (await store.get("messages", doc_id))["text"] == "hi"


@pytest.mark.asyncio
async def test_update_dotted_path(store):
    await store.set("teams", "red", {"progress": {"current_quest": "", "previous_quests": ["q1"]}})
    await store.update("teams", "red", {"progress.current_quest": "q2"})
    doc = await store.get("teams", "red")
    assert doc["progress"] == {"current_quest": "q2", "previous_quests": ["q1"]}


@pytest.mark.asyncio
async def test_update_creates_intermediate_maps(store):
    await store.set("teams", "red", {})
    await store.update("teams", "red", {"inventory.compass": 1})
    assert (await store.get("teams", "red"))["inventory"] == {"compass": 1}


@pytest.mark.asyncio
async def test_update_missing_document_raises(store):
    with pytest.raises(DocumentNotFoundError):
        await store.update("teams", "ghost", {"currency": 1})


@pytest.mark.asyncio
async def test_delete_missing_is_noop(store):
    await store.delete("teams", "ghost")
    assert await store.query("teams") == []


# ── Queries ─────────────────────────────────────────────────


@pytest.fixture
async def scores(store):
    await store.set("teams", "a", {"currency": 50, "tags": ["fast"], "progress": {"current_quest": "q1"}})
    await store.set("teams", "b", {"currency": 10, "tags": [], "progress": {"current_quest": ""}})
    await store.set("teams", "c", {"currency": 30, "tags": ["fast", "loud"]})
    return store


@pytest.mark.asyncio
async def test_query_comparison_ops(scores):
    ids = lambda docs: [d["id"] for d in docs]  # noqa: E731
    assert ids(await scores.query("teams", where=[("currency", ">=", 30)])) == ["a", "c"]
    assert ids(await scores.query("teams", where=[("currency", "<", 30)])) == ["b"]
    assert ids(await scores.query("teams", where=[("currency", "!=", 10)])) == ["a", "c"]
    assert ids(await scores.query("teams", where=[("currency", "in", [10, 50])])) == ["a", "b"]
    assert ids(await scores.query("teams", where=[("tags", "array_contains", "loud")])) == ["c"]


@pytest.mark.asyncio
async def test_query_dotted_field_skips_missing(scores):
    docs = await scores.query("teams", where=[("progress.current_quest", "==", "")])
    assert [d["id"] for d in docs] == ["b"]


@pytest.mark.asyncio
async def test_query_order_and_limit(scores):
    docs = await scores.query("teams", order_by="currency", descending=True, limit=2)
    assert [d["currency"] for d in docs] == [50, 30]


@pytest.mark.asyncio
async def test_query_unknown_operator(scores):
    with pytest.raises(ValueError):
        await scores.query("teams", where=[("currency", "~", 1)])


@pytest.mark.asyncio
async def test_timestamps_compare_across_spellings(store):
    await store.set("messages", "m1", {"timestamp": "2025-06-01T12:00:00Z"})
    await store.set("messages", "m2", {"timestamp": "2025-06-01T11:59:59.500000+00:00"})
    docs = await store.query("messages", order_by="timestamp")
    assert [d["id"] for d in docs] == ["m2", "m1"]


@pytest.mark.asyncio
async def test_server_timestamp_strictly_increases(store):
    # ManualClock stands still, yet every commit gets a later stamp.
    for i in range(3):
        await store.set("messages", f"m{i}", {"timestamp": store.server_timestamp()})
    stamps = [datetime.fromisoformat((await store.get("messages", f"m{i}"))["timestamp"]) for i in range(3)]
    assert stamps[0] < stamps[1] < stamps[2]


# ── Atomic updates ──────────────────────────────────────────


@pytest.mark.asyncio
async def test_atomic_update_applies_changes(store):
    await store.set("teams", "red", {"currency": 100})
    doc = await store.run_atomic_update("teams", "red", lambda d: {"currency": d["currency"] - 20})
    assert doc["currency"] == 80


@pytest.mark.asyncio
async def test_atomic_update_none_writes_nothing(store):
    await store.set("teams", "red", {"currency": 100})
    before = store.version("teams", "red")
    await store.run_atomic_update("teams", "red", lambda d: None)
    assert store.version("teams", "red") == before


@pytest.mark.asyncio
async def test_atomic_update_exception_aborts(store):
    await store.set("teams", "red", {"currency": 5})

    def refuse(doc):
        raise RuntimeError("too poor")

    with pytest.raises(RuntimeError):
        await store.run_atomic_update("teams", "red", refuse)
    assert (await store.get("teams", "red"))["currency"] == 5


@pytest.mark.asyncio
async def test_atomic_update_missing_document(store):
    with pytest.raises(DocumentNotFoundError):
        await store.run_atomic_update("teams", "ghost", lambda d: {"x": 1})


@pytest.mark.asyncio
async def test_atomic_update_retries_after_concurrent_write(store):
    await store.set("teams", "red", {"currency": 100})
    calls = 0

    async def spend(doc):
        nonlocal calls
        calls += 1
        if calls == 1:
            # a teammate's device commits in between
            await store.update("teams", "red", {"currency": doc["currency"] + 1})
        return {"currency": doc["currency"] + 10}

    doc = await store.run_atomic_update("teams", "red", spend)
    assert calls == 2
    assert doc["currency"] == 111


@pytest.mark.asyncio
async def test_atomic_update_gives_up_after_bound(store):
    await store.set("teams", "red", {"currency": 100})
    calls = 0

    async def always_raced(doc):
        nonlocal calls
        calls += 1
        await store.update("teams", "red", {"noise": calls})
        return {"currency": 0}

    with pytest.raises(ConcurrentUpdateConflictError):
        await store.run_atomic_update("teams", "red", always_raced, max_attempts=3)
    assert calls == 3
    assert (await store.get("teams", "red"))["currency"] == 100


@pytest.mark.asyncio
async def test_default_attempt_bound_comes_from_store(clock):
    store = MemoryStore(clock=clock, max_attempts=2)
    await store.set("teams", "red", {})
    calls = 0

    async def always_raced(doc):
        nonlocal calls
        calls += 1
        await store.update("teams", "red", {"noise": calls})
        return {"x": 1}

    with pytest.raises(ConcurrentUpdateConflictError):
        await store.run_atomic_update("teams", "red", always_raced)
    assert calls == 2


# ── Subscriptions ───────────────────────────────────────────


@pytest.mark.asyncio
async def test_subscribe_delivers_initial_snapshot(store):
    await store.set("teams", "a", {"currency": 60})
    snapshots = []
    await store.subscribe("teams", snapshots.append)
    assert len(snapshots) == 1
    assert [d["id"] for d in snapshots[0].docs] == ["a"]
    assert snapshots[0].changes == [DocChange(type="added", doc={"id": "a", "currency": 60})]


@pytest.mark.asyncio
async def test_subscribe_reports_changes(store):
    snapshots = []
    await store.subscribe("teams", snapshots.append, where=[("currency", ">=", 50)])
    assert snapshots[0].docs == []

    await store.set("teams", "a", {"currency": 60})
    await store.update("teams", "a", {"currency": 70})
    await store.update("teams", "a", {"currency": 10})
    await store.set("teams", "b", {"currency": 5})  # never matches

    assert [s.changes[0].type for s in snapshots[1:]] == ["added", "modified", "removed"]
    assert snapshots[-1].docs == []


@pytest.mark.asyncio
async def test_subscribe_sees_nested_update(store):
    await store.set("teams", "a", {"progress": {"current_quest": ""}})
    snapshots = []
    await store.subscribe("teams", snapshots.append)
    await store.update("teams", "a", {"progress.current_quest": "q1"})

    assert len(snapshots) == 2
    assert snapshots[1].changes[0].type == "modified"
    assert snapshots[1].changes[0].doc["progress"] == {"current_quest": "q1"}


@pytest.mark.asyncio
async def test_unsubscribe_stops_callbacks(store):
    snapshots = []
    sub = await store.subscribe("teams", snapshots.append)
    sub.unsubscribe()
    await store.set("teams", "a", {"currency": 1})
    assert len(snapshots) == 1
    assert not sub.active


@pytest.mark.asyncio
async def test_async_listener_is_awaited(store):
    seen = []

    async def listener(snapshot):
        seen.append(snapshot.size)

    await store.subscribe("teams", listener)
    await store.set("teams", "a", {})
    assert seen == [0, 1]


# ── Batches ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_batch_commits_together(store):
    await store.set("quests", "q1", {"sequence": 1})
    await store.set("quests", "q2", {"sequence": 2})
    snapshots = []
    await store.subscribe("quests", snapshots.append)

    batch = store.batch()
    batch.update("quests", "q1", {"sequence": 2})
    batch.update("quests", "q2", {"sequence": 1})
    batch.set("quests", "q3", {"sequence": 3})
    await batch.commit()

    docs = await store.query("quests", order_by="sequence")
    assert [d["id"] for d in docs] == ["q2", "q1", "q3"]
    assert len(snapshots) == 2  # initial + one for the whole batch


@pytest.mark.asyncio
async def test_batch_with_missing_document_writes_nothing(store):
    await store.set("quests", "q1", {"sequence": 1})
    batch = store.batch()
    batch.update("quests", "q1", {"sequence": 9})
    batch.update("quests", "ghost", {"sequence": 1})
    with pytest.raises(DocumentNotFoundError):
        await batch.commit()
    assert (await store.get("quests", "q1"))["sequence"] == 1
