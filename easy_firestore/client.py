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
Async document client.

DocumentClient is the canonical surface of the library: every operation is a
coroutine (or, for listeners, returns an async iterator). The callback and
reactive adapters in ``easy_firestore.adapters`` are thin wrappers around it.

Blocking SDK calls run in worker threads via ``asyncio.to_thread`` so no
operation blocks the event loop.

Cache policy:
- One-shot reads (get, query, get_collection_group) return whatever the SDK
  returns; ``include_cache`` does not filter them.
- Listeners with ``include_cache=False`` skip every emission that is not
  confirmed by the server (see ``is_server_confirmed``). With the default
  ``include_cache=True`` every emission is delivered.

Decode policy:
- Single-document reads and listeners fail with DecodeError.
- Collection reads and listeners drop documents that fail to decode.

Example:
    >>> client = DocumentClient()
    >>> ref = await client.create(Message(text="hello"))
    >>> message = await client.get(Message, ref.id)
    >>> async with client.listen_query(Message, [EqualFilter(field_path="status", value="active")]) as stream:
    ...     async for messages in stream:
    ...         render(messages)
"""

import asyncio
from typing import Any, Callable, Iterable, Optional, Sequence, TypeVar

from google.cloud import firestore  # type: ignore[import-untyped]

from easy_firestore.errors import (
    AlreadyExistsError,
    DecodeError,
    InvalidTimestampError,
    NoReferenceError,
    NotFoundError,
)
from easy_firestore.firestore import get_firestore_client, run_transaction
from easy_firestore.listeners import ListenerKey, ListenerRegistry, ListenerStream
from easy_firestore.logging import get_logger, operation_scope
from easy_firestore.models import (
    IDENTITY_FIELDS,
    FirestoreModel,
    model_from_snapshot,
    model_to_firestore,
)
from easy_firestore.query import QueryFilter, QueryOrder, build_query, query_key
from easy_firestore.references import collection_path, resolve_collection, resolve_document

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=FirestoreModel)
V = TypeVar("V")


def collection_group_path(collection_name: str) -> str:
    """Registry path used for collection group listeners."""
    return f"**/{collection_name}"


def is_server_confirmed(snapshots: Iterable[Any], read_time: Any) -> bool:
    """
    Return True if a listener delivery reflects committed server state.

    A delivery is unconfirmed when it carries no read time, or when any
    snapshot reports ``metadata.from_cache`` or ``metadata.has_pending_writes``.
    The Python server SDK never sets either flag, so its deliveries are
    always confirmed.
    """
    if read_time is None:
        return False
    for snapshot in snapshots:
        metadata = getattr(snapshot, "metadata", None)
        if metadata is None:
            continue
        if getattr(metadata, "from_cache", False) or getattr(metadata, "has_pending_writes", False):
            return False
    return True


def decode_documents(model_type: type[ModelT], snapshots: Iterable[Any]) -> list[ModelT]:
    """Decode every snapshot, dropping the ones that fail to decode."""
    models: list[ModelT] = []
    for snapshot in snapshots:
        try:
            models.append(model_from_snapshot(model_type, snapshot))
        except DecodeError as exc:
            logger.warning(
                "document_decode_skipped",
                path=exc.path,
                model=model_type.__name__,
                error=str(exc.cause),
            )
    return models


def _fetch(query: Any) -> list[Any]:
    return list(query.stream())


def _parent_ids(model: FirestoreModel) -> tuple[str, ...]:
    return tuple(getattr(model, "parent_ids", ()))


def _require_id(document_id: str) -> str:
    if not document_id:
        raise ValueError("document_id must be a non-empty string")
    return document_id


class DocumentClient:
    """
    Firestore wrapper exposing CRUD, query and real-time listener operations
    for FirestoreModel types.

    Args:
        client: Firestore SDK client. Defaults to the lazily created
            process-wide client from ``get_firestore_client()``.
        registry: Listener registry. A private one is created by default.
    """

    def __init__(
        self,
        client: Optional[firestore.Client] = None,
        registry: Optional[ListenerRegistry] = None,
    ):
        self._client = client
        self.registry = registry or ListenerRegistry()

    @property
    def client(self) -> firestore.Client:
        if self._client is None:
            self._client = get_firestore_client()
        return self._client

    # ==========================================================================
    # Write
    # ==========================================================================

    async def create(
        self, model: FirestoreModel, document_id: Optional[str] = None
    ) -> Any:
        """
        Persist a new document, overwriting nothing but its own path.

        Args:
            model: A model that has never been persisted (id is None)
            document_id: Explicit id for the new document; generated if None

        Returns:
            DocumentReference of the new document

        Raises:
            AlreadyExistsError: If the model already has an id
            InvalidTimestampError: If created_at or updated_at is set
            ReferenceResolutionError: If a sub-collection parent id is missing
        """
        model_type = type(model)
        with operation_scope("create", model_type.collection_name):
            if model.id is not None:
                raise AlreadyExistsError(f"{model_type.collection_name}/{model.id}")
            self._check_unstamped(model)

            ref = resolve_document(self.client, model_type, document_id, _parent_ids(model))
            data = model_to_firestore(model, timestamps="create")
            await asyncio.to_thread(ref.set, data, merge=False)

            logger.info("document_created", path=ref.path)
            return ref

    async def write(
        self, model: FirestoreModel, document_id: Optional[str] = None
    ) -> Any:
        """
        Save or update: the recommended entry point for persisting a model.

        - With an id: merges into the existing document; updated_at is
          re-stamped by the server, created_at is kept.
        - Without an id: creates a new document (same checks as ``create``)
          using a merge write.

        Args:
            model: The model to persist
            document_id: Id for the new document when the model has none

        Returns:
            DocumentReference of the written document
        """
        model_type = type(model)
        with operation_scope("write", model_type.collection_name):
            if model.id is not None:
                ref = resolve_document(self.client, model_type, model.id, _parent_ids(model))
                data = model_to_firestore(model, timestamps="update")
            else:
                self._check_unstamped(model)
                ref = resolve_document(self.client, model_type, document_id, _parent_ids(model))
                data = model_to_firestore(model, timestamps="create")

            await asyncio.to_thread(ref.set, data, merge=True)

            logger.info("document_written", path=ref.path)
            return ref

    async def update(self, model: FirestoreModel) -> None:
        """
        Merge a previously created model into its document.

        updated_at is cleared before sending so the server re-stamps it.

        Raises:
            NoReferenceError: If the model has no id
            InvalidTimestampError: If the model has no created_at
        """
        model_type = type(model)
        with operation_scope("update", model_type.collection_name):
            if model.id is None:
                raise NoReferenceError(model_type)
            if model.created_at is None:
                raise InvalidTimestampError(
                    "update() requires a model that has been created (created_at is None)",
                    created_at=model.created_at,
                    updated_at=model.updated_at,
                )

            ref = resolve_document(self.client, model_type, model.id, _parent_ids(model))
            data = model_to_firestore(model, timestamps="update")
            await asyncio.to_thread(ref.set, data, merge=True)

            logger.info("document_updated", path=ref.path)

    async def delete(self, model: FirestoreModel) -> None:
        """
        Delete the model's document.

        Raises:
            NoReferenceError: If the model has no id
        """
        model_type = type(model)
        with operation_scope("delete", model_type.collection_name):
            if model.id is None:
                raise NoReferenceError(model_type)

            ref = resolve_document(self.client, model_type, model.id, _parent_ids(model))
            await asyncio.to_thread(ref.delete)

            logger.info("document_deleted", path=ref.path)

    async def write_transaction(
        self,
        model: FirestoreModel,
        field: str,
        value: V,
        resolve: Callable[[V, V], V],
    ) -> None:
        """
        Read-modify-write one field atomically.

        Inside a transaction, reads the stored value of ``field``, computes
        ``resolve(stored, value)`` and writes ``model`` back with that value.
        Conflicting concurrent writes are retried by the SDK's transaction
        loop, which calls ``resolve`` again with the fresh stored value.

        Args:
            model: A persisted model (id set)
            field: Name of the model field to resolve
            value: The caller's new value for the field
            resolve: Merges (stored, new) into the value to write

        Raises:
            NoReferenceError: If the model has no id
            NotFoundError: If the document no longer exists
            DecodeError: If the stored document does not decode
            ValueError: If ``field`` is not a writable model field
        """
        model_type = type(model)
        if field not in model_type.model_fields or field in IDENTITY_FIELDS:
            raise ValueError(f"{model_type.__name__}.{field} is not a writable model field")

        with operation_scope("write_transaction", model_type.collection_name):
            if model.id is None:
                raise NoReferenceError(model_type)

            ref = resolve_document(self.client, model_type, model.id, _parent_ids(model))

            def apply(transaction: Any) -> None:
                snapshot = ref.get(transaction=transaction)
                if not snapshot.exists:
                    raise NotFoundError(ref.path)
                stored = model_from_snapshot(model_type, snapshot)
                merged = resolve(getattr(stored, field), value)
                updated = model.model_copy(update={field: merged})
                transaction.set(ref, model_to_firestore(updated, timestamps="update"), merge=True)

            await asyncio.to_thread(run_transaction, self.client, apply)

            logger.info("document_transaction_committed", path=ref.path, field=field)

    # ==========================================================================
    # Read
    # ==========================================================================

    async def get(
        self,
        model_type: type[ModelT],
        document_id: str,
        *,
        include_cache: bool = True,
        parent_ids: Sequence[str] = (),
    ) -> ModelT:
        """
        Fetch and decode a single document.

        ``include_cache`` is accepted for symmetry with ``listen``; one-shot
        reads always return what the SDK delivers.

        Raises:
            NotFoundError: If the document does not exist
            DecodeError: If the document does not decode into model_type
        """
        with operation_scope("get", model_type.collection_name):
            ref = resolve_document(self.client, model_type, _require_id(document_id), parent_ids)
            snapshot = await asyncio.to_thread(ref.get)
            if not snapshot.exists:
                raise NotFoundError(ref.path)
            return model_from_snapshot(model_type, snapshot)

    async def query(
        self,
        model_type: type[ModelT],
        filters: Sequence[QueryFilter] = (),
        order: Sequence[QueryOrder] = (),
        limit: Optional[int] = None,
        *,
        include_cache: bool = True,
        parent_ids: Sequence[str] = (),
    ) -> list[ModelT]:
        """
        Run a filtered query once over the model's collection.

        Documents that fail to decode are dropped from the result.

        Args:
            model_type: Model type to query
            filters: Filters applied in order; no-op filters are skipped
            order: Orders applied in order
            limit: Maximum number of documents, or None
            include_cache: Accepted for symmetry with ``listen_query``
            parent_ids: Ancestor ids (sub-collection models only)

        Returns:
            Decoded models in query order
        """
        with operation_scope("query", model_type.collection_name):
            collection = resolve_collection(self.client, model_type, parent_ids)
            query = build_query(collection, filters, order, limit)
            snapshots = await asyncio.to_thread(_fetch, query)
            return decode_documents(model_type, snapshots)

    async def get_collection_group(
        self,
        model_type: type[ModelT],
        filters: Sequence[QueryFilter] = (),
        order: Sequence[QueryOrder] = (),
        limit: Optional[int] = None,
        *,
        include_cache: bool = True,
    ) -> list[ModelT]:
        """
        Run a filtered query once across every collection named
        ``model_type.collection_name``, at any nesting depth.
        """
        with operation_scope("get_collection_group", model_type.collection_name):
            group = self.client.collection_group(model_type.collection_name)
            query = build_query(group, filters, order, limit)
            snapshots = await asyncio.to_thread(_fetch, query)
            return decode_documents(model_type, snapshots)

    # ==========================================================================
    # Listen
    # ==========================================================================

    def listen(
        self,
        model_type: type[ModelT],
        document_id: str,
        *,
        include_cache: bool = True,
        parent_ids: Sequence[str] = (),
    ) -> ListenerStream[ModelT]:
        """
        Listen to one document.

        Must be called from a running event loop. Any listener already active
        for the same document is cancelled first.

        The stream yields a freshly decoded model on every change. Snapshots
        reporting that the document does not exist are not emitted. The
        stream fails with DecodeError if a snapshot does not decode, and ends
        without error when stopped, superseded or closed.
        """
        document_id = _require_id(document_id)
        path = collection_path(model_type, parent_ids)
        ref = resolve_document(self.client, model_type, document_id, parent_ids)
        key = ListenerKey.for_document(model_type.collection_name, path, document_id)

        def on_snapshot(stream: ListenerStream[ModelT]) -> Callable[..., None]:
            def callback(snapshots: Any, changes: Any, read_time: Any) -> None:
                if stream.cancelled:
                    return
                try:
                    if not isinstance(snapshots, (list, tuple)):
                        snapshots = [snapshots]
                    snapshot = snapshots[0] if snapshots else None
                    if snapshot is None or not snapshot.exists:
                        return
                    if not include_cache and not is_server_confirmed([snapshot], read_time):
                        return
                    stream.emit(model_from_snapshot(model_type, snapshot))
                except Exception as exc:
                    stream.fail(exc)

            return callback

        with operation_scope("listen", path):
            stream = self._register(key, ref, on_snapshot)
            logger.info("listener_started", document_id=document_id, include_cache=include_cache)
        return stream

    def listen_query(
        self,
        model_type: type[ModelT],
        filters: Sequence[QueryFilter] = (),
        order: Sequence[QueryOrder] = (),
        limit: Optional[int] = None,
        *,
        include_cache: bool = True,
        parent_ids: Sequence[str] = (),
    ) -> ListenerStream[list[ModelT]]:
        """
        Listen to a filtered query over the model's collection.

        Must be called from a running event loop. Each distinct combination of
        collection path, effective filters, orders and limit is its own
        listener key; listening again with an equal combination cancels the
        previous listener.

        The stream yields the full decoded result list on every change,
        dropping documents that fail to decode.
        """
        path = collection_path(model_type, parent_ids)
        collection = resolve_collection(self.client, model_type, parent_ids)
        query = build_query(collection, filters, order, limit)
        key = ListenerKey.for_query(
            model_type.collection_name, path, query_key(path, filters, order, limit)
        )

        with operation_scope("listen_query", path):
            stream = self._register(key, query, self._query_callback(model_type, include_cache))
            logger.info("listener_started", include_cache=include_cache)
        return stream

    def listen_collection_group(
        self,
        model_type: type[ModelT],
        filters: Sequence[QueryFilter] = (),
        order: Sequence[QueryOrder] = (),
        limit: Optional[int] = None,
        *,
        include_cache: bool = True,
    ) -> ListenerStream[list[ModelT]]:
        """Listen to a filtered query across every collection named ``model_type.collection_name``."""
        path = collection_group_path(model_type.collection_name)
        group = self.client.collection_group(model_type.collection_name)
        query = build_query(group, filters, order, limit)
        key = ListenerKey.for_query(
            model_type.collection_name, path, query_key(path, filters, order, limit)
        )

        with operation_scope("listen_collection_group", path):
            stream = self._register(key, query, self._query_callback(model_type, include_cache))
            logger.info("listener_started", include_cache=include_cache)
        return stream

    # ==========================================================================
    # Stop
    # ==========================================================================

    def stop_listening(
        self,
        model_type: type[FirestoreModel],
        document_id: Optional[str] = None,
        *,
        parent_ids: Sequence[str] = (),
    ) -> int:
        """
        Stop listeners for a model type.

        - With ``document_id``: stops that document's listener.
        - With ``parent_ids`` only: stops every listener on that exact
          collection path.
        - With neither: stops every listener (document, query and collection
          group) on collections named ``model_type.collection_name``.

        Returns:
            Number of listeners stopped
        """
        if document_id is not None:
            path = collection_path(model_type, parent_ids)
            key = ListenerKey.for_document(model_type.collection_name, path, document_id)
            return int(self.registry.stop(key))

        if parent_ids:
            path = collection_path(model_type, parent_ids)
            return self.registry.stop_matching(lambda key: key.path == path)

        name = model_type.collection_name
        return self.registry.stop_matching(lambda key: key.collection == name)

    def stop_listening_key(self, key: ListenerKey) -> bool:
        """Stop the listener registered under ``key``, if any."""
        return self.registry.stop(key)

    def stop_listening_all(self) -> int:
        """Stop every active listener."""
        stopped = self.registry.stop_all()
        logger.info("listeners_stopped", count=stopped)
        return stopped

    # ==========================================================================
    # Internal
    # ==========================================================================

    def _register(
        self,
        key: ListenerKey,
        target: Any,
        make_callback: Callable[[ListenerStream[Any]], Callable[..., None]],
    ) -> ListenerStream[Any]:
        loop = asyncio.get_running_loop()

        def factory() -> ListenerStream[Any]:
            stream: ListenerStream[Any] = ListenerStream(key, loop)
            watch = target.on_snapshot(make_callback(stream))
            stream.attach(watch.unsubscribe)
            return stream

        return self.registry.register(key, factory)

    @staticmethod
    def _query_callback(
        model_type: type[ModelT], include_cache: bool
    ) -> Callable[[ListenerStream[list[ModelT]]], Callable[..., None]]:
        def on_snapshot(stream: ListenerStream[list[ModelT]]) -> Callable[..., None]:
            def callback(snapshots: Any, changes: Any, read_time: Any) -> None:
                if stream.cancelled:
                    return
                try:
                    if not include_cache and not is_server_confirmed(snapshots, read_time):
                        return
                    stream.emit(decode_documents(model_type, snapshots))
                except Exception as exc:
                    stream.fail(exc)

            return callback

        return on_snapshot

    @staticmethod
    def _check_unstamped(model: FirestoreModel) -> None:
        if model.created_at is not None or model.updated_at is not None:
            raise InvalidTimestampError(
                "created_at and updated_at are assigned by the server and must be unset on new models",
                created_at=model.created_at,
                updated_at=model.updated_at,
            )
