import pytest

from terminal.errors import NotFoundError, TransactionFailedError
from terminal.storage import (
    ArrayRemove, ArrayUnion, DocumentStore, Increment, SERVER_TIMESTAMP, apply_changes,
)


async def test_set_get_and_missing_documents(store):
    await store.set("things", "a", {"name": "A", "count": 1})

    assert await store.get("things", "a") == {"name": "A", "count": 1}
    assert await store.get("things", "b") is None
    assert await store.query("things", lambda d: d["count"] > 1) == []


async def test_update_of_missing_document_fails(store):
    with pytest.raises(NotFoundError):
        await store.update("things", "ghost", {"count": 1})


async def test_field_operations_and_dotted_paths(store):
    await store.set("things", "a", {"count": 1, "tags": ["x"], "nested": {"score": 2}})

    await store.update("things", "a", {
        "count": Increment(4),
        "tags": ArrayUnion("x", "y"),
        "nested.score": Increment(-2),
        "nested.deeper.flag": True,
        "stamp": SERVER_TIMESTAMP,
    })
    await store.update("things", "a", {"tags": ArrayRemove("x")})

    doc = await store.get("things", "a")
    assert doc["count"] == 5
    assert doc["tags"] == ["y"]
    assert doc["nested"] == {"score": 0, "deeper": {"flag": True}}
    assert isinstance(doc["stamp"], str)


def test_apply_changes_leaves_the_input_untouched():
    original = {"nested": {"score": 1}}
    updated = apply_changes(original, {"nested.score": Increment(1)}, "t")
    assert original == {"nested": {"score": 1}}
    assert updated == {"nested": {"score": 2}}


async def test_conflicting_write_reruns_the_body(store):
    await store.set("counters", "c", {"value": 0})
    attempts = []

    async def body(txn):
        doc = await txn.get("counters", "c")
        attempts.append(doc["value"])
        if len(attempts) == 1:
            await store.set("counters", "c", {"value": 10})
        txn.set("counters", "c", {"value": doc["value"] + 1})

    await store.run_transaction(body)

    assert attempts == [0, 10]
    assert (await store.get("counters", "c"))["value"] == 11


async def test_gives_up_after_max_attempts(tmp_path):
    store = DocumentStore(str(tmp_path / "busy.db"), max_attempts=2)
    await store.initialize()
    await store.set("counters", "c", {"value": 0})

    async def body(txn):
        doc = await txn.get("counters", "c")
        await store.update("counters", "c", {"value": Increment(1)})
        txn.set("counters", "c", {"value": doc["value"] + 100})

    with pytest.raises(TransactionFailedError):
        await store.run_transaction(body)
    assert (await store.get("counters", "c"))["value"] == 2


async def test_body_error_writes_nothing(store):
    async def body(txn):
        txn.set("things", "a", {"name": "A"})
        raise ValueError("boom")

    with pytest.raises(ValueError):
        await store.run_transaction(body)
    assert await store.get("things", "a") is None


async def test_drain_buffer_keeps_entries_pushed_during_the_handler(store):
    await store.push_buffer("k", {"n": 1})
    await store.push_buffer("k", {"n": 2})

    async def handler(entries):
        await store.push_buffer("k", {"n": 3})
        return [e["n"] for e in entries]

    assert await store.drain_buffer("k", handler) == [1, 2]
    assert await store.read_buffer("k") == [{"n": 3}]
    assert await store.buffer_keys() == ["k"]


async def test_failed_handler_leaves_buffer_intact(store):
    await store.push_buffer("k", {"n": 1})

    async def handler(entries):
        raise RuntimeError("write failed")

    with pytest.raises(RuntimeError):
        await store.drain_buffer("k", handler)
    assert await store.read_buffer("k") == [{"n": 1}]


async def test_state_values(store):
    assert await store.get_state("flag") is None
    await store.set_state("flag", "1")
    await store.set_state("flag", "0")
    assert await store.get_state("flag") == "0"
