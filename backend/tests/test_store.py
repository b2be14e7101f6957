import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError

import termbook.store as store_module
from termbook.errors import NotFoundError, StoreError, ValidationError


def _fail_on_call(monkeypatch, n):
    """Make the n-th write applied by the store raise a database error."""
    original = store_module._apply
    calls = {"count": 0}

    def flaky(session, op):
        calls["count"] += 1
        if calls["count"] == n:
            raise OperationalError("UPDATE documents", {}, Exception("disk I/O error"))
        return original(session, op)

    monkeypatch.setattr(store_module, "_apply", flaky)


def test_set_get_update_delete(store):
    store.set("things", "a", {"name": "A", "n": 1})
    assert store.get("things", "a") == {"id": "a", "name": "A", "n": 1}
    store.update("things", "a", {"n": 2})
    assert store.get("things", "a") == {"id": "a", "name": "A", "n": 2}
    store.set("things", "a", {"name": "A2"})
    assert store.get("things", "a") == {"id": "a", "name": "A2"}
    store.delete("things", "a")
    assert store.get("things", "a") is None


def test_get_missing_returns_none(store):
    assert store.get("things", "nope") is None


def test_update_missing_raises(store):
    with pytest.raises(NotFoundError):
        store.update("things", "nope", {"x": 1})


def test_add_generates_distinct_keys(store):
    k1 = store.add("things", {"x": 1})
    k2 = store.add("things", {"x": 2})
    assert k1 != k2
    assert store.get("things", k1)["x"] == 1


def test_collections_are_isolated(store):
    store.set("a", "k", {"v": 1})
    store.set("b", "k", {"v": 2})
    assert store.get("a", "k")["v"] == 1
    assert [r["v"] for r in store.query("b")] == [2]


def test_query_filters_and_multi_field_ordering(store):
    store.set("logs", "1", {"date": "2025-11-01", "ts": "09:00"})
    store.set("logs", "2", {"date": "2025-11-02", "ts": "08:00"})
    store.set("logs", "3", {"date": "2025-11-02", "ts": "10:00"})
    store.set("logs", "4", {"date": "2025-11-03", "ts": "07:00"})
    rows = store.query(
        "logs",
        [("date", ">=", "2025-11-01"), ("date", "<=", "2025-11-02")],
        [("date", "desc"), ("ts", "desc")],
    )
    assert [r["id"] for r in rows] == ["3", "2", "1"]
    rows = store.query("logs", [("date", "==", "2025-11-02")], [("ts", "asc")])
    assert [r["id"] for r in rows] == ["2", "3"]


def test_query_skips_documents_missing_filtered_field(store):
    store.set("things", "a", {"cat": "x"})
    store.set("things", "b", {})
    assert [r["id"] for r in store.query("things", [("cat", "==", "x")])] == ["a"]


def test_query_rejects_unknown_operator(store):
    with pytest.raises(ValidationError):
        store.query("things", [("x", "~", 1)])


def test_batch_commits_all_writes(store):
    store.set("c", "a", {"fav": False})
    store.set("c", "b", {"fav": False})
    batch = store.batch()
    batch.update("c", "a", {"fav": True}).update("c", "b", {"fav": True}).set("c", "new", {"fav": True})
    assert len(batch) == 3
    assert batch.commit() == 3
    assert all(r["fav"] for r in store.query("c"))


def test_batch_is_all_or_nothing_when_a_document_is_missing(store):
    store.set("c", "a", {"fav": False})
    batch = store.batch()
    batch.update("c", "a", {"fav": True})
    batch.update("c", "ghost", {"fav": True})
    with pytest.raises(NotFoundError):
        batch.commit()
    assert store.get("c", "a")["fav"] is False


def test_batch_database_failure_is_store_error_and_rolls_back(store, monkeypatch):
    for key in "abc":
        store.set("c", key, {"fav": False})
    _fail_on_call(monkeypatch, 3)
    batch = store.batch()
    for key in "abc":
        batch.update("c", key, {"fav": True})
    with pytest.raises(StoreError, match="disk I/O error"):
        batch.commit()
    monkeypatch.undo()
    assert [r["fav"] for r in store.query("c")] == [False, False, False]


def test_transaction_reads_own_writes_and_commits(store):
    with store.transaction() as txn:
        assert txn.get("sum", "d") is None
        txn.set("sum", "d", {"total": 1})
        assert txn.get("sum", "d")["total"] == 1
        txn.update("sum", "d", {"total": 2})
    assert store.get("sum", "d") == {"id": "d", "total": 2}


def test_transaction_rolls_back_when_block_raises(store):
    store.set("sum", "d", {"total": 1})
    with pytest.raises(RuntimeError):
        with store.transaction() as txn:
            txn.set("sum", "d", {"total": 99})
            raise RuntimeError("boom")
    assert store.get("sum", "d")["total"] == 1


def test_transaction_reads_lock_the_row():
    sql = str(store_module.locked_select("dailySummaries", "2025-11-02").compile(dialect=postgresql.dialect()))
    assert "FOR UPDATE" in sql
    assert "FROM documents" in sql


def test_subscribe_pushes_initial_and_changed_results(store):
    seen = []
    store.set("terms", "t1", {"category": "english", "n": 1})
    unsubscribe = store.subscribe("terms", seen.append, [("category", "==", "english")])
    assert [[r["id"] for r in snap] for snap in seen] == [["t1"]]
    store.set("terms", "t2", {"category": "english", "n": 2})
    store.set("terms", "t3", {"category": "math", "n": 3})
    assert sorted(r["id"] for r in seen[-1]) == ["t1", "t2"]
    unsubscribe()
    count = len(seen)
    store.delete("terms", "t1")
    assert len(seen) == count


def test_subscriber_only_notified_for_its_collection(store):
    seen = []
    store.subscribe("categories", seen.append)
    store.set("terms", "t", {})
    assert len(seen) == 1


def test_failing_subscriber_does_not_undo_write(store):
    def broken(_records):
        if broken.armed:
            raise RuntimeError("listener bug")
    broken.armed = False
    store.subscribe("things", broken)
    broken.armed = True
    store.set("things", "a", {"v": 1})
    assert store.get("things", "a") == {"id": "a", "v": 1}
