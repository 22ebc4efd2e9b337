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
Declarative query filters, orders and the query builder.

Filters and orders are immutable value objects. The builder folds them onto
a collection (or collection group) in list order and derives a canonical key
from the same inputs, which the listener registry uses to recognise repeated
subscriptions to the same query.

Example:
    >>> filters = [EqualFilter(field_path="status", value="active")]
    >>> order = [QueryOrder(field_path="created_at", ascending=False)]
    >>> query = build_query(client.collection("tasks"), filters, order, limit=20)
"""

import json
from datetime import datetime
from typing import Any, Literal, Optional, Sequence, Union

from google.cloud import firestore  # type: ignore[import-untyped]
from google.cloud.firestore_v1.base_query import FieldFilter
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    model_validator,
)

# Closed set of values a filter may compare against
FilterScalar = Union[StrictBool, StrictInt, StrictFloat, StrictStr, datetime]
FilterValue = Union[FilterScalar, list[FilterScalar]]


class QueryFilter(BaseModel):
    """
    Base class for a single declarative query constraint.

    A filter whose ``field_path`` is unset or empty is a no-op: the builder
    skips it and it does not contribute to the canonical query key.
    """

    model_config = ConfigDict(frozen=True)

    kind: str
    field_path: Optional[str] = Field(
        default=None, description="Dotted field path the constraint applies to"
    )

    def is_noop(self) -> bool:
        """Return True if applying this filter would leave the query unchanged."""
        return not self.field_path

    def apply(self, query: Any) -> Any:
        """Return ``query`` refined by this filter."""
        raise NotImplementedError

    def canonical(self) -> dict[str, Any]:
        """Deterministic, JSON-compatible description of this filter."""
        return self.model_dump(mode="json")


class EqualFilter(QueryFilter):
    """Matches documents whose field equals ``value``."""

    kind: Literal["equal"] = "equal"
    value: Optional[FilterValue] = None

    def apply(self, query: Any) -> Any:
        if self.is_noop():
            return query
        return query.where(filter=FieldFilter(self.field_path, "==", self.value))


class RangeFilter(QueryFilter):
    """
    Matches documents whose field lies strictly between the two bounds.

    An empty or inverted range (``min_value >= max_value``) is a no-op rather
    than an error, since callers often build ranges from optional bounds.
    """

    kind: Literal["range"] = "range"
    min_value: FilterScalar
    max_value: FilterScalar

    @model_validator(mode="after")
    def validate_comparable_bounds(self) -> "RangeFilter":
        """Ensure the two bounds can be ordered against each other."""
        try:
            self.min_value < self.max_value
        except TypeError:
            raise ValueError(
                f"min_value ({type(self.min_value).__name__}) and max_value "
                f"({type(self.max_value).__name__}) are not comparable"
            )
        return self

    def is_noop(self) -> bool:
        return super().is_noop() or self.min_value >= self.max_value

    def apply(self, query: Any) -> Any:
        if self.is_noop():
            return query
        return query.where(
            filter=FieldFilter(self.field_path, ">", self.min_value)
        ).where(filter=FieldFilter(self.field_path, "<", self.max_value))


class ContainsFilter(QueryFilter):
    """Matches documents whose field equals any of ``values`` (an ``in`` query)."""

    kind: Literal["contains"] = "contains"
    values: list[FilterScalar] = Field(default_factory=list)

    def is_noop(self) -> bool:
        return super().is_noop() or not self.values

    def apply(self, query: Any) -> Any:
        if self.is_noop():
            return query
        return query.where(filter=FieldFilter(self.field_path, "in", list(self.values)))


class QueryOrder(BaseModel):
    """Orders results by ``field_path``; multiple orders apply in list order."""

    model_config = ConfigDict(frozen=True)

    field_path: str
    ascending: bool = True

    def apply(self, query: Any) -> Any:
        direction = firestore.Query.ASCENDING if self.ascending else firestore.Query.DESCENDING
        return query.order_by(self.field_path, direction=direction)

    def canonical(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


# ==============================================================================
# Query Builder
# ==============================================================================


def build_query(
    base: Any,
    filters: Sequence[QueryFilter] = (),
    order: Sequence[QueryOrder] = (),
    limit: Optional[int] = None,
) -> Any:
    """
    Fold filters, then orders, then an optional limit onto ``base``.

    Args:
        base: A CollectionReference, collection group or Query
        filters: Filters applied left to right; no-op filters are skipped
        order: Orders applied left to right (primary first)
        limit: Maximum number of results, or None for no limit clause

    Returns:
        The refined Query (``base`` itself when nothing applies)
    """
    query = base
    for query_filter in filters:
        query = query_filter.apply(query)
    for query_order in order:
        query = query_order.apply(query)
    if limit is not None:
        query = query.limit(limit)
    return query


def query_key(
    path: str,
    filters: Sequence[QueryFilter] = (),
    order: Sequence[QueryOrder] = (),
    limit: Optional[int] = None,
) -> str:
    """
    Derive the canonical key of the query ``build_query`` would produce.

    Equal inputs always produce equal keys, and no-op filters are left out
    so that a query with a no-op filter shares its key with the same query
    without it.

    Args:
        path: Collection path (or collection group marker) the query targets
        filters: The query filters
        order: The query orders
        limit: The result limit, if any

    Returns:
        A compact JSON string
    """
    payload = {
        "path": path,
        "filters": [f.canonical() for f in filters if not f.is_noop()],
        "order": [o.canonical() for o in order],
        "limit": limit,
    }
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))
