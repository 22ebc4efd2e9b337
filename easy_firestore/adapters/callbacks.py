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
Callback-style binding of DocumentClient.

Every operation schedules the matching DocumentClient coroutine and reports
its outcome to a ``success`` or ``failure`` callable, which run on the event
loop thread. Errors, ordering and cache policy are exactly those of the
async client, and listeners are registered before ``listen*`` returns.

Example:
    >>> callbacks = CallbackClient(DocumentClient(), loop=loop)
    >>> callbacks.create(
    ...     Message(text="hello"),
    ...     success=lambda ref: print("created", ref.id),
    ...     failure=lambda error: print("failed", error),
    ... )
"""

import asyncio
from typing import Any, Callable, Optional, Sequence, TypeVar

from easy_firestore.adapters.scheduling import AnyFuture, on_done, schedule, start_listener
from easy_firestore.client import DocumentClient
from easy_firestore.models import FirestoreModel
from easy_firestore.query import QueryFilter, QueryOrder

ModelT = TypeVar("ModelT", bound=FirestoreModel)
V = TypeVar("V")

Failure = Callable[[BaseException], None]


class CallbackSubscription:
    """Handle for a callback listener; ``cancel()`` stops it and releases the listener."""

    def __init__(self, future: AnyFuture):
        self._future = future

    def cancel(self) -> None:
        self._future.cancel()

    @property
    def active(self) -> bool:
        return not self._future.done()


class CallbackClient:
    """
    Callback adapter over a DocumentClient.

    Args:
        client: The async client to drive
        loop: Event loop to run operations on when called from another
            thread. Calls made on the loop's own thread need no loop.
    """

    def __init__(
        self, client: DocumentClient, loop: Optional[asyncio.AbstractEventLoop] = None
    ):
        self.client = client
        self._loop = loop

    def _run(self, coro: Any, success: Callable[[Any], None], failure: Failure) -> AnyFuture:
        future = schedule(coro, self._loop)
        on_done(future, success, failure)
        return future

    def create(
        self,
        model: FirestoreModel,
        success: Callable[[Any], None],
        failure: Failure,
        document_id: Optional[str] = None,
    ) -> AnyFuture:
        return self._run(self.client.create(model, document_id), success, failure)

    def write(
        self,
        model: FirestoreModel,
        success: Callable[[Any], None],
        failure: Failure,
        document_id: Optional[str] = None,
    ) -> AnyFuture:
        return self._run(self.client.write(model, document_id), success, failure)

    def update(
        self, model: FirestoreModel, success: Callable[[], None], failure: Failure
    ) -> AnyFuture:
        return self._run(self.client.update(model), lambda _: success(), failure)

    def delete(
        self, model: FirestoreModel, success: Callable[[], None], failure: Failure
    ) -> AnyFuture:
        return self._run(self.client.delete(model), lambda _: success(), failure)

    def write_transaction(
        self,
        model: FirestoreModel,
        field: str,
        value: V,
        resolve: Callable[[V, V], V],
        success: Callable[[], None],
        failure: Failure,
    ) -> AnyFuture:
        return self._run(
            self.client.write_transaction(model, field, value, resolve),
            lambda _: success(),
            failure,
        )

    def get(
        self,
        model_type: type[ModelT],
        document_id: str,
        success: Callable[[ModelT], None],
        failure: Failure,
        *,
        include_cache: bool = True,
        parent_ids: Sequence[str] = (),
    ) -> AnyFuture:
        return self._run(
            self.client.get(
                model_type, document_id, include_cache=include_cache, parent_ids=parent_ids
            ),
            success,
            failure,
        )

    def query(
        self,
        model_type: type[ModelT],
        success: Callable[[list[ModelT]], None],
        failure: Failure,
        filters: Sequence[QueryFilter] = (),
        order: Sequence[QueryOrder] = (),
        limit: Optional[int] = None,
        *,
        include_cache: bool = True,
        parent_ids: Sequence[str] = (),
    ) -> AnyFuture:
        return self._run(
            self.client.query(
                model_type,
                filters,
                order,
                limit,
                include_cache=include_cache,
                parent_ids=parent_ids,
            ),
            success,
            failure,
        )

    def get_collection_group(
        self,
        model_type: type[ModelT],
        success: Callable[[list[ModelT]], None],
        failure: Failure,
        filters: Sequence[QueryFilter] = (),
        order: Sequence[QueryOrder] = (),
        limit: Optional[int] = None,
        *,
        include_cache: bool = True,
    ) -> AnyFuture:
        return self._run(
            self.client.get_collection_group(
                model_type, filters, order, limit, include_cache=include_cache
            ),
            success,
            failure,
        )

    def listen(
        self,
        model_type: type[ModelT],
        document_id: str,
        on_next: Callable[[ModelT], None],
        on_error: Failure,
        *,
        include_cache: bool = True,
        parent_ids: Sequence[str] = (),
    ) -> CallbackSubscription:
        """Deliver every change of one document to ``on_next`` until cancelled or failed."""

        def open_stream() -> Any:
            return self.client.listen(
                model_type, document_id, include_cache=include_cache, parent_ids=parent_ids
            )

        return CallbackSubscription(
            start_listener(open_stream, on_next, on_error, loop=self._loop)
        )

    def listen_query(
        self,
        model_type: type[ModelT],
        on_next: Callable[[list[ModelT]], None],
        on_error: Failure,
        filters: Sequence[QueryFilter] = (),
        order: Sequence[QueryOrder] = (),
        limit: Optional[int] = None,
        *,
        include_cache: bool = True,
        parent_ids: Sequence[str] = (),
    ) -> CallbackSubscription:
        """Deliver every result list of a query to ``on_next`` until cancelled or failed."""

        def open_stream() -> Any:
            return self.client.listen_query(
                model_type,
                filters,
                order,
                limit,
                include_cache=include_cache,
                parent_ids=parent_ids,
            )

        return CallbackSubscription(
            start_listener(open_stream, on_next, on_error, loop=self._loop)
        )

    def listen_collection_group(
        self,
        model_type: type[ModelT],
        on_next: Callable[[list[ModelT]], None],
        on_error: Failure,
        filters: Sequence[QueryFilter] = (),
        order: Sequence[QueryOrder] = (),
        limit: Optional[int] = None,
        *,
        include_cache: bool = True,
    ) -> CallbackSubscription:
        def open_stream() -> Any:
            return self.client.listen_collection_group(
                model_type, filters, order, limit, include_cache=include_cache
            )

        return CallbackSubscription(
            start_listener(open_stream, on_next, on_error, loop=self._loop)
        )

    def stop_listening(
        self,
        model_type: type[FirestoreModel],
        document_id: Optional[str] = None,
        *,
        parent_ids: Sequence[str] = (),
    ) -> int:
        return self.client.stop_listening(model_type, document_id, parent_ids=parent_ids)

    def stop_listening_all(self) -> int:
        return self.client.stop_listening_all()
