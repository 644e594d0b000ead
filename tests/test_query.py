"""Tests for query parameter parsing."""

from __future__ import annotations

import pytest

from recordstore.errors import InvalidParametersError
from recordstore.query import (
    FieldFilter,
    QueryResult,
    RangeQuery,
    SortDirection,
    parse_filter,
    parse_page_info,
    parse_range,
    parse_sort,
)


class TestParseFilter:
    def test_operator_suffixes(self):
        filters = parse_filter(
            '{"age_gte": 18, "name": "bob", "tags_inc_any": ["a"], "score_neq_any": [1, 2]}'
        )
        assert filters == [
            FieldFilter("age", "_gte", 18),
            FieldFilter("name", "_eq", "bob"),
            FieldFilter("tags", "_inc_any", ["a"]),
            FieldFilter("score", "_neq_any", [1, 2]),
        ]

    def test_longest_suffix_wins(self):
        assert parse_filter({"x_eq_any": [1]}) == [FieldFilter("x", "_eq_any", [1])]
        assert parse_filter({"x_lte": 1}) == [FieldFilter("x", "_lte", 1)]

    def test_nested_field(self):
        assert parse_filter({"address.city_q": "par"}) == [
            FieldFilter("address.city", "_q", "par")
        ]

    def test_null_values_ignored(self):
        assert parse_filter({"age_gte": None}) == []

    def test_empty(self):
        assert parse_filter(None) == []
        assert parse_filter("") == []

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", '{"bad-field": 1}'])
    def test_invalid(self, raw):
        with pytest.raises(InvalidParametersError):
            parse_filter(raw)


class TestParseSort:
    def test_object_form(self):
        spec = parse_sort('{"field": "age", "direction": "DESC"}')
        assert spec.field == "age"
        assert spec.direction is SortDirection.DESC
        assert spec.descending

    def test_list_form(self):
        spec = parse_sort('["name", "asc"]')
        assert spec.field == "name"
        assert not spec.descending

    def test_default_ascending(self):
        assert parse_sort({"field": "n"}).direction is SortDirection.ASC

    def test_id_sort(self):
        assert parse_sort(["id", "DESC"]).by_key

    @pytest.mark.parametrize(
        "raw", ['{"field": "", "order": "ASC"}', '["a", "sideways"]', '["a"]', "7"]
    )
    def test_invalid(self, raw):
        with pytest.raises(InvalidParametersError):
            parse_sort(raw)


class TestParseRange:
    def test_valid(self):
        assert parse_range("[0, 9]") == (0, 9)

    def test_absent(self):
        assert parse_range(None) == (None, None)

    @pytest.mark.parametrize("raw", ["[5, 2]", "[-1, 3]", "[1]", '["a", 2]', "{}"])
    def test_invalid(self, raw):
        with pytest.raises(InvalidParametersError):
            parse_range(raw)


class TestParsePageInfo:
    def test_camel_case_keys(self):
        info = parse_page_info(
            '{"firstVisible": {"position": 10, "id": "a"}, "lastVisible": {"position": 19, "id": "b"}}'
        )
        assert info.first_visible.position == 10
        assert info.last_visible.id == "b"

    def test_negative_position_rejected(self):
        with pytest.raises(InvalidParametersError):
            parse_page_info({"lastVisible": {"position": -1, "id": "a"}})


def test_range_query_sort_field():
    assert RangeQuery.parse(sort=["id", "ASC"]).sort_field is None
    assert RangeQuery.parse(sort=["age", "DESC"]).sort_field == "age"
    assert RangeQuery.parse(sort=["age", "DESC"]).descending


def test_query_result_as_dict():
    result = QueryResult(total_count=5, range_start=1, range_end=3, data=[{"id": "a"}])
    assert result.as_dict() == {
        "totalCount": 5,
        "rangeStart": 1,
        "rangeEnd": 3,
        "data": [{"id": "a"}],
    }
