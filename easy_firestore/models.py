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
Pydantic base models for documents persisted through easy_firestore.

Application record types subclass FirestoreModel (top-level collections) or
SubCollectionModel (collections nested under a parent document). The models
support:
- Serialization to Firestore documents with server-assigned timestamps
- Deserialization from document snapshots, with identity taken from the path
- Sub-collection nesting to any depth through the parent_model chain
"""

from datetime import datetime, timezone
from typing import Any, ClassVar, Literal, Optional, TypeVar, Union

from google.cloud import firestore  # type: ignore[import-untyped]
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from easy_firestore.errors import DecodeError

ModelT = TypeVar("ModelT", bound="FirestoreModel")

# Fields that live in the document path rather than the document body
IDENTITY_FIELDS = frozenset({"id", "parent_ids"})

# Fields stamped by the server on write
TIMESTAMP_FIELDS = frozenset({"created_at", "updated_at"})


class FirestoreModel(BaseModel):
    """
    Base class for a document stored in a top-level collection.

    Subclasses declare the collection they live in with the ``collection_name``
    class variable and add their own fields.

    Identity:
    - ``id`` is None until the model has been persisted; decoded models always
      carry the document id.
    - ``created_at`` and ``updated_at`` are assigned by the server. Leave them
      unset on new models.

    Example:
        >>> class Message(FirestoreModel):
        ...     collection_name: ClassVar[str] = "messages"
        ...     text: str
        >>> Message(text="hello").id is None
        True
    """

    model_config = ConfigDict(populate_by_name=True)

    collection_name: ClassVar[str]

    id: Optional[str] = Field(
        default=None,
        exclude=True,
        description="Document id; None until the model has been persisted",
    )
    created_at: Optional[datetime] = Field(
        default=None, description="Server-assigned creation timestamp"
    )
    updated_at: Optional[datetime] = Field(
        default=None, description="Server-assigned last update timestamp"
    )

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def coerce_timestamps(cls, value: Any) -> Optional[datetime]:
        """Accept Firestore Timestamps, datetimes and ISO strings."""
        return datetime_from_firestore(value)


class SubCollectionModel(FirestoreModel):
    """
    Base class for a document stored in a collection nested under a parent
    document.

    Subclasses declare ``parent_model``, the model type whose documents own
    this collection. The parent may itself be a SubCollectionModel; the chain
    ends at a plain FirestoreModel.

    ``parent_ids`` holds the ids of the ancestor documents, ordered from the
    root collection down to the direct parent. For ``users/u1/posts/p1/comments``
    a comment carries ``parent_ids=("u1", "p1")``.
    """

    parent_model: ClassVar[type[FirestoreModel]]

    parent_ids: tuple[str, ...] = Field(
        default=(),
        exclude=True,
        description="Ancestor document ids, root first",
    )


# ==============================================================================
# Firestore Serialization Helpers
# ==============================================================================


def datetime_to_firestore(dt: Union[datetime, str, None]) -> Optional[datetime]:
    """
    Convert a datetime object or ISO string to a Firestore-compatible value.

    Naive datetimes are assumed to be UTC; aware datetimes are converted to UTC.

    Args:
        dt: A datetime object, ISO 8601 string, or None

    Returns:
        None if input is None, otherwise a timezone-aware UTC datetime

    Raises:
        ValueError: If ISO string cannot be parsed or input type is invalid

    Examples:
        >>> datetime_to_firestore("2026-01-11T12:00:00Z")
        datetime.datetime(2026, 1, 11, 12, 0, tzinfo=datetime.timezone.utc)
    """
    if dt is None:
        return None

    if isinstance(dt, str):
        if dt.endswith("Z"):
            dt = dt[:-1] + "+00:00"
        try:
            parsed_dt = datetime.fromisoformat(dt)
        except ValueError as e:
            raise ValueError(f"Cannot parse ISO 8601 string '{dt}': {e}")

        if parsed_dt.tzinfo is None:
            return parsed_dt.replace(tzinfo=timezone.utc)
        return parsed_dt.astimezone(timezone.utc)

    if isinstance(dt, datetime):
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)

    raise ValueError(
        f"Cannot convert {type(dt).__name__} to Firestore timestamp. Expected datetime, ISO 8601 string, or None."
    )


def datetime_from_firestore(value: Any) -> Optional[datetime]:
    """
    Convert a Firestore Timestamp, datetime or ISO string to a UTC datetime.

    Args:
        value: A Firestore Timestamp, datetime, ISO 8601 string, or None

    Returns:
        datetime object (timezone-aware, UTC) or None

    Raises:
        ValueError: If value cannot be converted to datetime
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    if isinstance(value, str):
        return datetime_to_firestore(value)

    # protobuf Timestamp values expose to_datetime()
    if hasattr(value, "to_datetime"):
        return value.to_datetime()

    raise ValueError(
        f"Cannot convert {type(value).__name__} to datetime. Expected Firestore Timestamp, datetime, ISO 8601 string, or None."
    )


def to_firestore_dict(
    model: BaseModel,
    *,
    exclude: Optional[set[str]] = None,
    exclude_none: bool = True,
) -> dict[str, Any]:
    """
    Convert a Pydantic model to a Firestore-friendly dictionary.

    Uses field aliases, omits None values by default, and normalizes every
    nested datetime to UTC.

    Args:
        model: A Pydantic BaseModel instance
        exclude: Field names to leave out
        exclude_none: If True, omit fields with None values (default: True)

    Returns:
        Dictionary suitable for Firestore storage
    """
    data = model.model_dump(
        mode="python", by_alias=True, exclude=exclude, exclude_none=exclude_none
    )
    return _convert_timestamps_in_dict(data)


def _convert_timestamps_in_dict(data: Any) -> Any:
    if isinstance(data, dict):
        return {key: _convert_timestamps_in_dict(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_convert_timestamps_in_dict(item) for item in data]
    elif isinstance(data, datetime):
        return datetime_to_firestore(data)
    return data


def model_to_firestore(
    model: FirestoreModel, *, timestamps: Literal["create", "update"]
) -> dict[str, Any]:
    """
    Serialize a model into the document body sent to Firestore.

    The identity fields (id, parent_ids) are never part of the body.

    Timestamp handling:
    - ``"create"``: created_at and updated_at are both SERVER_TIMESTAMP
    - ``"update"``: updated_at is SERVER_TIMESTAMP; created_at is kept as is
      when the model carries one and omitted otherwise, so merge writes never
      overwrite the stored creation time

    Args:
        model: The model to serialize
        timestamps: Which server timestamp policy to apply

    Returns:
        Dictionary suitable for DocumentReference.set()
    """
    data = to_firestore_dict(model, exclude=set(TIMESTAMP_FIELDS))

    if timestamps == "create":
        data["created_at"] = firestore.SERVER_TIMESTAMP
    elif model.created_at is not None:
        data["created_at"] = datetime_to_firestore(model.created_at)
    data["updated_at"] = firestore.SERVER_TIMESTAMP

    return data


def parent_ids_from_path(path: str) -> tuple[str, ...]:
    """
    Recover the ancestor document ids from a document path.

    Document paths alternate collection and document segments, so the ids
    are every second segment; the last one belongs to the document itself.

    Examples:
        >>> parent_ids_from_path("users/u1/posts/p1/comments/c1")
        ('u1', 'p1')
        >>> parent_ids_from_path("users/u1")
        ()
    """
    segments = [segment for segment in path.split("/") if segment]
    return tuple(segments[1::2][:-1])


def model_from_snapshot(model_type: type[ModelT], snapshot: Any) -> ModelT:
    """
    Decode a document snapshot into ``model_type``.

    The document id (and, for sub-collection models, the ancestor ids) are
    taken from the snapshot's reference rather than from the stored body.

    Args:
        model_type: The FirestoreModel subclass to decode into
        snapshot: A DocumentSnapshot for an existing document

    Returns:
        The decoded model

    Raises:
        DecodeError: If the stored data does not validate against model_type
    """
    data = snapshot.to_dict() or {}
    path = snapshot.reference.path

    payload = dict(data)
    payload["id"] = snapshot.id
    if issubclass(model_type, SubCollectionModel):
        payload["parent_ids"] = parent_ids_from_path(path)

    try:
        return model_type.model_validate(payload)
    except ValidationError as exc:
        raise DecodeError(model_type, path, data, exc) from exc
