# Copyright 2025 John Brosnihan
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
Unit tests for declarative filters, orders, the query builder and the
canonical query key.
"""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from easy_firestore.query import (
    ContainsFilter,
    EqualFilter,
    QueryOrder,
    RangeFilter,
    build_query,
    query_key,
)
from easy_firestore.testing import FakeFirestoreClient


def describe(query):
    """Everything the fake query records about its clauses."""
    return (query._filters, query._orders, query._limit)


@pytest.fixture
def messages():
    return FakeFirestoreClient().collection("messages")


class TestFilters:
    """Test how each filter kind refines a query."""

    def test_equal_filter_adds_equality_clause(self, messages):
        """Test EqualFilter becomes a single == clause."""
        query = EqualFilter(field_path="status", value="active").apply(messages)
        assert query._filters == (("status", "==", "active"),)

    def test_range_filter_adds_exclusive_bounds(self, messages):
        """Test RangeFilter becomes > min and < max."""
        query = RangeFilter(field_path="priority", min_value=1, max_value=5).apply(messages)
        assert query._filters == (("priority", ">", 1), ("priority", "<", 5))

    def test_range_filter_with_inverted_bounds_is_noop(self, messages):
        """Test min >= max leaves the query untouched instead of failing."""
        inverted = RangeFilter(field_path="priority", min_value=5, max_value=1)
        empty = RangeFilter(field_path="priority", min_value=3, max_value=3)
        assert inverted.is_noop()
        assert empty.is_noop()
        assert inverted.apply(messages) is messages

    def test_range_filter_rejects_incomparable_bounds(self):
        """Test bounds of unrelated types are rejected at construction."""
        with pytest.raises(ValidationError):
            RangeFilter(field_path="priority", min_value="a", max_value=3)

    def test_range_filter_accepts_timestamps(self, messages):
        """Test datetime bounds are part of the closed value set."""
        start = datetime(2026, 1, 1, tzinfo=timezone.utc)
        end = datetime(2026, 2, 1, tzinfo=timezone.utc)
        query = RangeFilter(field_path="created_at", min_value=start, max_value=end).apply(messages)
        assert query._filters[0] == ("created_at", ">", start)

    def test_contains_filter_becomes_in_clause(self, messages):
        """Test ContainsFilter becomes an in clause over its values."""
        query = ContainsFilter(field_path="status", values=["active", "pending"]).apply(messages)
        assert query._filters == (("status", "in", ["active", "pending"]),)

    def test_contains_filter_with_no_values_is_noop(self, messages):
        """Test an empty value list leaves the query untouched."""
        assert ContainsFilter(field_path="status", values=[]).apply(messages) is messages

    def test_filter_values_are_a_closed_set(self):
        """Test values outside string/number/bool/timestamp/list are rejected."""
        with pytest.raises(ValidationError):
            EqualFilter(field_path="status", value={"nested": "dict"})

    def test_filters_are_immutable(self):
        """Test filters are frozen value objects."""
        query_filter = EqualFilter(field_path="status", value="active")
        with pytest.raises(ValidationError):
            query_filter.value = "inactive"


class TestNoopFilters:
    """Test that filters without a field path never change the query."""

    @pytest.mark.parametrize(
        "noop",
        [
            EqualFilter(value="active"),
            EqualFilter(field_path="", value="active"),
            RangeFilter(field_path=None, min_value=1, max_value=5),
            ContainsFilter(field_path="", values=["a"]),
        ],
    )
    def test_noop_filter_matches_query_without_it(self, messages, noop):
        """Test a query built with a no-op filter equals one built without it."""
        real = [EqualFilter(field_path="status", value="active")]
        order = [QueryOrder(field_path="priority")]

        with_noop = build_query(messages, [noop] + real, order, 10)
        without = build_query(messages, real, order, 10)

        assert describe(with_noop) == describe(without)

    def test_noop_filter_does_not_change_query_key(self):
        """Test a no-op filter does not contribute to the canonical key."""
        real = EqualFilter(field_path="status", value="active")
        assert query_key("messages", [EqualFilter(value="x"), real]) == query_key(
            "messages", [real]
        )


class TestBuildQuery:
    """Test folding filters, orders and limit onto a base query."""

    def test_no_clauses_returns_base(self, messages):
        """Test an empty description returns the base reference itself."""
        assert build_query(messages) is messages

    def test_orders_apply_in_list_order(self, messages):
        """Test the first order is the primary sort key."""
        query = build_query(
            messages,
            order=[
                QueryOrder(field_path="priority", ascending=False),
                QueryOrder(field_path="text"),
            ],
        )
        assert query._orders == (("priority", "DESCENDING"), ("text", "ASCENDING"))

    def test_limit_is_applied(self, messages):
        """Test limit is recorded on the query."""
        assert build_query(messages, limit=3)._limit == 3

    def test_built_query_filters_documents(self):
        """Test the built query selects, orders and limits stored documents."""
        db = FakeFirestoreClient()
        for doc_id, status, priority in [
            ("a", "active", 1),
            ("b", "inactive", 9),
            ("c", "active", 5),
            ("d", "active", 3),
        ]:
            db.seed(f"messages/{doc_id}", {"status": status, "priority": priority})

        query = build_query(
            db.collection("messages"),
            [EqualFilter(field_path="status", value="active")],
            [QueryOrder(field_path="priority", ascending=False)],
            limit=2,
        )

        assert [snapshot.id for snapshot in query.stream()] == ["c", "d"]


class TestQueryKey:
    """Test canonical query key derivation."""

    def test_equal_inputs_give_equal_keys(self):
        """Test separately constructed but equal inputs produce the same key."""

        def make():
            return query_key(
                "messages",
                [
                    EqualFilter(field_path="status", value="active"),
                    RangeFilter(field_path="priority", min_value=1, max_value=5),
                ],
                [QueryOrder(field_path="priority", ascending=False)],
                20,
            )

        assert make() == make()

    def test_different_values_give_different_keys(self):
        """Test keys distinguish filter values."""
        active = query_key("messages", [EqualFilter(field_path="status", value="active")])
        inactive = query_key("messages", [EqualFilter(field_path="status", value="inactive")])
        assert active != inactive

    def test_key_includes_path_order_and_limit(self):
        """Test path, order direction and limit each change the key."""
        base = query_key("messages", [], [QueryOrder(field_path="text")], 10)
        assert base != query_key("users/u1/posts", [], [QueryOrder(field_path="text")], 10)
        assert base != query_key(
            "messages", [], [QueryOrder(field_path="text", ascending=False)], 10
        )
        assert base != query_key("messages", [], [QueryOrder(field_path="text")], None)

    def test_key_preserves_filter_order(self):
        """Test filter order is significant since it is the application order."""
        first = EqualFilter(field_path="status", value="active")
        second = EqualFilter(field_path="text", value="hello")
        assert query_key("messages", [first, second]) != query_key("messages", [second, first])

    def test_key_handles_timestamps(self):
        """Test datetime values serialize deterministically."""
        when = datetime(2026, 1, 11, 12, 0, tzinfo=timezone.utc)
        key = query_key("messages", [EqualFilter(field_path="created_at", value=when)])
        assert "2026-01-11T12:00:00Z" in key
