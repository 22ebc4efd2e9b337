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
easy_firestore: typed models, declarative queries and managed real-time
listeners on top of Google Cloud Firestore.

Example:
    >>> from easy_firestore import DocumentClient, EqualFilter, FirestoreModel
    >>> class Task(FirestoreModel):
    ...     collection_name: ClassVar[str] = "tasks"
    ...     title: str
    ...     status: str = "active"
    >>> client = DocumentClient()
    >>> ref = await client.create(Task(title="write docs"))
    >>> active = await client.query(Task, [EqualFilter(field_path="status", value="active")])
"""

from easy_firestore.adapters import CallbackClient, CallbackSubscription, ReactiveClient
from easy_firestore.client import DocumentClient
from easy_firestore.config import Settings, get_settings
from easy_firestore.errors import (
    AlreadyExistsError,
    DecodeError,
    FirestoreClientError,
    InvalidTimestampError,
    NoReferenceError,
    NotFoundError,
    ReferenceResolutionError,
)
from easy_firestore.firestore import get_firestore_client, reset_firestore_client
from easy_firestore.listeners import ListenerKey, ListenerRegistry, ListenerStream
from easy_firestore.logging import configure_logging, get_logger
from easy_firestore.models import FirestoreModel, SubCollectionModel
from easy_firestore.query import (
    ContainsFilter,
    EqualFilter,
    QueryFilter,
    QueryOrder,
    RangeFilter,
    build_query,
    query_key,
)

__version__ = "0.1.0"

__all__ = [
    "AlreadyExistsError",
    "CallbackClient",
    "CallbackSubscription",
    "ContainsFilter",
    "DecodeError",
    "DocumentClient",
    "EqualFilter",
    "FirestoreClientError",
    "FirestoreModel",
    "InvalidTimestampError",
    "ListenerKey",
    "ListenerRegistry",
    "ListenerStream",
    "NoReferenceError",
    "NotFoundError",
    "QueryFilter",
    "QueryOrder",
    "RangeFilter",
    "ReactiveClient",
    "ReferenceResolutionError",
    "Settings",
    "SubCollectionModel",
    "build_query",
    "configure_logging",
    "get_firestore_client",
    "get_logger",
    "get_settings",
    "query_key",
    "reset_firestore_client",
]
