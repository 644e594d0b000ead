"""Tests for the SQLite document DataStore."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from recordstore.document_store import DocumentDataStore
from recordstore.errors import (
    InvalidDataError,
    InvalidMethodError,
    InvalidParametersError,
    RecordCreateFailedError,
    RecordNotFoundError,
    RecordReadFailedError,
    RecordUpdateFailedError,
    StorageBackendError,
)
from recordstore.options import DataStoreOptions


def _store(client, collection="people", **options):
    return DocumentDataStore(client, collection, DataStoreOptions(**options))


def _manual(client, collection="people", **options):
    return _store(client, collection, create_id_option="manual_reject_id_conflicts", **options)


def _seed(store, values):
    """Create one record per value under ids r0, r1, ... with field ``n``."""
    for i, value in enumerate(values):
        store.create_with_id(f"r{i}", {"n": value})


def _boom(_record_id, _value):
    raise RuntimeError("downstream failed")


class TestCreate:
    def test_create_generates_id(self, doc_client):
        store = _store(doc_client)
        record = store.create({"name": "Alice"})
        assert record["name"] == "Alice"
        assert len(record["id"]) == 20
        assert store.read(record["id"]) == record

    def test_create_rejected_for_manual_ids(self, doc_client):
        with pytest.raises(InvalidMethodError):
            _manual(doc_client).create({"name": "Alice"})

    def test_create_with_id_rejected_for_auto_ids(self, doc_client):
        with pytest.raises(InvalidMethodError):
            _store(doc_client).create_with_id("a", {"name": "Alice"})

    def test_reject_conflicts(self, doc_client):
        store = _manual(doc_client)
        store.create_with_id("alice", {"n": 1})
        with pytest.raises(RecordCreateFailedError, match="already exists"):
            store.create_with_id("alice", {"n": 2})
        assert store.read("alice")["n"] == 1

    def test_allow_conflicts_suffixes_until_exhausted(self, doc_client):
        store = _store(doc_client, create_id_option="manual_allow_id_conflicts")
        ids = [store.create_with_id("doc", {"i": i})["id"] for i in range(100)]
        assert ids[:3] == ["doc", "doc-2", "doc-3"]
        assert ids[-1] == "doc-100"
        with pytest.raises(RecordCreateFailedError, match="100 records already exist"):
            store.create_with_id("doc", {"i": 100})

    def test_callback_failure_leaves_no_record(self, doc_client):
        store = _manual(doc_client)
        with pytest.raises(RecordCreateFailedError, match="Callback failed"):
            store.create_with_id("alice", {"n": 1}, callback=_boom)
        with pytest.raises(RecordNotFoundError):
            store.read("alice")

    def test_callback_sees_final_id(self, doc_client):
        store = _store(doc_client, create_id_option="manual_allow_id_conflicts")
        store.create_with_id("a", {"n": 1})
        seen = []
        store.create_with_id("a", {"n": 2}, callback=lambda rid, value: seen.append((rid, value)))
        assert seen == [("a-2", {"n": 2})]

    def test_invalid_values(self, doc_client):
        store = _store(doc_client)
        with pytest.raises(InvalidDataError):
            store.create(None)
        with pytest.raises(InvalidDataError):
            store.create({"id": "x"})
        with pytest.raises(InvalidDataError):
            store.create(["a"])

    def test_null_allowed_stores_empty_document(self, doc_client):
        store = _store(doc_client, allow_null_or_undefined=True)
        record = store.create(None)
        assert store.read(record["id"]) == {"id": record["id"]}

    def test_invalid_id(self, doc_client):
        with pytest.raises(InvalidParametersError):
            _manual(doc_client).create_with_id("a/b", {"n": 1})

    def test_scalar_shape_unsupported(self, doc_client):
        with pytest.raises(InvalidParametersError):
            _store(doc_client, value_shape="string")


class TestReadUpdateDelete:
    def test_read_missing(self, doc_client):
        with pytest.raises(RecordNotFoundError):
            _store(doc_client).read("nope")

    def test_update_merges_and_returns_previous(self, doc_client):
        store = _manual(doc_client)
        store.create_with_id("a", {"name": "Alice", "age": 30})
        previous = store.update("a", {"age": 31, "city": "Paris"})
        assert previous == {"id": "a", "name": "Alice", "age": 30}
        assert store.read("a") == {"id": "a", "name": "Alice", "age": 31, "city": "Paris"}

    def test_update_nested_object_replaced(self, doc_client):
        store = _manual(doc_client)
        store.create_with_id("a", {"address": {"city": "Paris", "zip": "75001"}})
        store.update("a", {"address": {"city": "Lyon"}})
        assert store.read("a")["address"] == {"city": "Lyon"}

    def test_update_keys_with_quotes(self, doc_client):
        store = _manual(doc_client)
        store.create_with_id("a", {"it's": 1})
        assert store.update("a", {"it's": 2}) == {"id": "a", "it's": 1}
        assert store.read("a") == {"id": "a", "it's": 2}

        guarded = _manual(doc_client, "guarded", require_transaction=True)
        key = "x'), '$.n', json('9'"
        guarded.create_with_id("b", {key: 0, "n": 1})
        guarded.transactional_update("b", {key: 5})
        assert guarded.read("b") == {"id": "b", key: 5, "n": 1}

    def test_update_missing(self, doc_client):
        with pytest.raises(RecordNotFoundError):
            _store(doc_client).update("nope", {"n": 1})

    def test_update_creates_when_configured(self, doc_client):
        store = _store(doc_client, create_if_not_exists=True)
        assert store.update("fresh", {"n": 1}) == {}
        assert store.read("fresh") == {"id": "fresh", "n": 1}

    def test_read_only_field_is_immutable(self, doc_client):
        store = _manual(doc_client, read_only_fields="owner")
        store.create_with_id("a", {"owner": "alice", "n": 1})
        with pytest.raises(InvalidDataError, match="read-only"):
            store.update("a", {"owner": "mallory"})
        store.update("a", {"owner": "alice", "n": 2})
        assert store.read("a") == {"id": "a", "owner": "alice", "n": 2}

    def test_plain_update_refused_when_transactions_required(self, doc_client):
        store = _manual(doc_client, require_transaction=True)
        store.create_with_id("a", {"n": 1})
        with pytest.raises(InvalidMethodError):
            store.update("a", {"n": 2})

    def test_transactional_update_refused_without_flag(self, doc_client):
        store = _manual(doc_client)
        store.create_with_id("a", {"n": 1})
        with pytest.raises(InvalidMethodError):
            store.transactional_update("a", {"n": 2})

    def test_transactional_update_callback_rolls_back(self, doc_client):
        store = _manual(doc_client, require_transaction=True)
        store.create_with_id("a", {"n": 1})
        with pytest.raises(RecordUpdateFailedError, match="Callback failed"):
            store.transactional_update("a", {"n": 2}, callback=_boom)
        assert store.read("a") == {"id": "a", "n": 1}

    def test_transactional_update(self, doc_client):
        store = _manual(doc_client, require_transaction=True)
        store.create_with_id("a", {"n": 1})
        seen = []
        previous = store.transactional_update(
            "a", {"n": 2}, callback=lambda rid, value: seen.append(rid)
        )
        assert previous == {"id": "a", "n": 1}
        assert seen == ["a"]
        assert store.read("a")["n"] == 2

    def test_delete_returns_record(self, doc_client):
        store = _manual(doc_client)
        store.create_with_id("a", {"n": 1})
        assert store.delete("a") == {"id": "a", "n": 1}
        with pytest.raises(RecordNotFoundError):
            store.delete("a")

    def test_dates_round_trip(self, doc_client):
        store = _manual(doc_client)
        when = datetime(2024, 2, 29, 13, 45, 1, 250000, tzinfo=timezone.utc)
        store.create_with_id("a", {"at": when, "log": [{"at": when}]})
        assert store.read("a") == {"id": "a", "at": when, "log": [{"at": when}]}

    def test_collections_are_isolated(self, doc_client):
        _manual(doc_client, "people").create_with_id("a", {"n": 1})
        with pytest.raises(RecordNotFoundError):
            _manual(doc_client, "pets").read("a")

    def test_backend_failure_is_wrapped(self, doc_client, monkeypatch):
        store = _manual(doc_client)

        def broken(*_args, **_kwargs):
            raise StorageBackendError("get", "disk on fire")

        monkeypatch.setattr(doc_client, "get", broken)
        with pytest.raises(RecordReadFailedError, match="disk on fire"):
            store.read("a")


class TestQuery:
    def test_sorted_range(self, doc_client):
        store = _manual(doc_client)
        _seed(store, [3, 1, 4, 1, 5])
        result = store.query(sort='{"field": "n", "direction": "ASC"}', range="[1, 3]")
        assert result.total_count == 5
        assert (result.range_start, result.range_end) == (1, 3)
        assert [r["n"] for r in result.data] == [1, 3, 4]
        assert [r["n"] for r in store.query(sort=["n", "ASC"], range=[0, 2]).data] == [1, 1, 3]

    def test_descending(self, doc_client):
        store = _manual(doc_client)
        _seed(store, [3, 1, 4, 1, 5])
        result = store.query(sort=["n", "DESC"])
        assert [r["n"] for r in result.data] == [5, 4, 3, 1, 1]
        assert [r["id"] for r in result.data][-2:] == ["r3", "r1"]

    def test_default_order_is_id(self, doc_client):
        store = _manual(doc_client)
        for rid in ["c", "a", "b"]:
            store.create_with_id(rid, {"n": 0})
        assert [r["id"] for r in store.query().data] == ["a", "b", "c"]
        assert [r["id"] for r in store.query(sort=["id", "DESC"]).data] == ["c", "b", "a"]

    def test_range_past_end(self, doc_client):
        store = _manual(doc_client)
        _seed(store, [1, 2, 3])
        result = store.query(range=[1, 10])
        assert (result.range_start, result.range_end) == (1, 2)
        assert len(result.data) == 2

    def test_empty_collection(self, doc_client):
        result = _store(doc_client).query(range=[0, 9])
        assert result.total_count == 0
        assert result.data == []

    def test_comparison_filters(self, doc_client):
        store = _manual(doc_client)
        _seed(store, [10, 20, 30, 40])
        assert [r["n"] for r in store.query({"n_gte": 20, "n_lt": 40}, ["n", "ASC"]).data] == [
            20,
            30,
        ]
        assert store.query({"n": 30}).total_count == 1
        assert store.query({"n_gt": 40}).total_count == 0

    def test_filters_do_not_cross_types(self, doc_client):
        store = _manual(doc_client)
        store.create_with_id("num", {"v": 5})
        store.create_with_id("text", {"v": "5"})
        store.create_with_id("flag", {"v": True})
        assert [r["id"] for r in store.query({"v": 5}).data] == ["num"]
        assert [r["id"] for r in store.query({"v": "5"}).data] == ["text"]
        assert [r["id"] for r in store.query({"v": True}).data] == ["flag"]

    def test_neq_excludes_missing_fields(self, doc_client):
        store = _manual(doc_client)
        store.create_with_id("a", {"city": "Paris"})
        store.create_with_id("b", {"city": "Lyon"})
        store.create_with_id("c", {"name": "no city"})
        assert [r["id"] for r in store.query({"city_neq": "Paris"}).data] == ["b"]

    def test_eq_any_and_neq_any(self, doc_client):
        store = _manual(doc_client)
        _seed(store, [1, 2, 3, 4])
        assert [r["n"] for r in store.query({"n_eq_any": [1, 3]}).data] == [1, 3]
        assert [r["n"] for r in store.query({"n_neq_any": [1, 3]}).data] == [2, 4]

    def test_inc_any(self, doc_client):
        store = _manual(doc_client)
        store.create_with_id("a", {"tags": ["red", "blue"]})
        store.create_with_id("b", {"tags": ["green"]})
        store.create_with_id("c", {"tags": "red"})
        result = store.query({"tags_inc_any": ["red", "yellow"]})
        assert [r["id"] for r in result.data] == ["a"]

    def test_q_matches_substrings_and_elements(self, doc_client):
        store = _manual(doc_client)
        store.create_with_id("a", {"name": "Margaret"})
        store.create_with_id("b", {"name": ["garden", "tools"]})
        store.create_with_id("c", {"name": ["gar"]})
        store.create_with_id("d", {"name": "Bob"})
        assert [r["id"] for r in store.query({"name_q": "gar"}).data] == ["a", "c"]

    def test_nested_field_filter_and_sort(self, doc_client):
        store = _manual(doc_client)
        store.create_with_id("a", {"address": {"city": "Paris", "zip": 75}})
        store.create_with_id("b", {"address": {"city": "Lyon", "zip": 69}})
        result = store.query({"address.zip_gte": 60}, {"field": "address.city"})
        assert [r["id"] for r in result.data] == ["b", "a"]

    def test_date_filter_and_sort(self, doc_client):
        store = _manual(doc_client)
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        for i in range(5):
            store.create_with_id(f"e{i}", {"at": base + timedelta(days=4 - i)})
        result = store.query({"at_gte": base + timedelta(days=2)}, ["at", "ASC"])
        assert [r["id"] for r in result.data] == ["e2", "e1", "e0"]

    def test_missing_sort_field_orders_first(self, doc_client):
        store = _manual(doc_client)
        store.create_with_id("a", {"n": 2})
        store.create_with_id("b", {})
        store.create_with_id("c", {"n": 1})
        assert [r["id"] for r in store.query(sort=["n", "ASC"]).data] == ["b", "c", "a"]

    def test_invalid_parameters(self, doc_client):
        store = _store(doc_client)
        with pytest.raises(InvalidParametersError):
            store.query(range="[3, 1]")
        with pytest.raises(InvalidParametersError):
            store.query(filter="{broken")
        with pytest.raises(InvalidParametersError):
            store.query({"n_lt": {"a": 1}})


class TestQueryCursors:
    @pytest.fixture
    def store(self, doc_client):
        store = _manual(doc_client)
        values = [7, None, 3, 3, 9, None, 1, 5, 3, 8, 2, 6, 4, 0, 3]
        for i, value in enumerate(values):
            store.create_with_id(f"r{i:02d}", {} if value is None else {"n": value})
        return store

    @pytest.mark.parametrize("direction", ["ASC", "DESC"])
    def test_cursor_pages_match_plain_pages(self, store, direction):
        sort = ["n", direction]
        full = store.query(sort=sort).data
        page_info = None
        collected = []
        for start in range(0, 15, 4):
            result = store.query(sort=sort, range=[start, start + 3], page_info=page_info)
            plain = store.query(sort=sort, range=[start, start + 3])
            assert result.data == plain.data
            collected.extend(result.data)
            page_info = {
                "firstVisible": {"position": result.range_start, "id": result.data[0]["id"]},
                "lastVisible": {"position": result.range_end, "id": result.data[-1]["id"]},
            }
        assert collected == full

    @pytest.mark.parametrize("direction", ["ASC", "DESC"])
    def test_previous_page_from_first_visible(self, store, direction):
        sort = ["n", direction]
        full = store.query(sort=sort).data
        page_info = {"firstVisible": {"position": 8, "id": full[8]["id"]}}
        result = store.query(sort=sort, range=[4, 7], page_info=page_info)
        assert result.data == full[4:8]

    def test_filtered_cursor_pages(self, store):
        query = {"n_gte": 3}
        full = store.query(query, ["n", "ASC"]).data
        page_info = {"lastVisible": {"position": 2, "id": full[2]["id"]}}
        result = store.query(query, ["n", "ASC"], [3, 5], page_info)
        assert result.data == full[3:6]

    def test_stale_cursor_is_ignored(self, store):
        sort = ["n", "ASC"]
        full = store.query(sort=sort).data
        page_info = {"lastVisible": {"position": 5, "id": full[5]["id"]}}
        store.update(full[0]["id"], {"n": 100})
        expected = store.query(sort=sort, range=[6, 9]).data
        assert store.query(sort=sort, range=[6, 9], page_info=page_info).data == expected

    def test_deleted_cursor_is_ignored(self, store):
        sort = ["n", "ASC"]
        full = store.query(sort=sort).data
        page_info = {"lastVisible": {"position": 5, "id": full[5]["id"]}}
        store.delete(full[5]["id"])
        expected = store.query(sort=sort, range=[6, 9]).data
        assert store.query(sort=sort, range=[6, 9], page_info=page_info).data == expected
