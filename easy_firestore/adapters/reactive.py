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
Reactive binding of DocumentClient built on ReactiveX (``reactivex``).

Every method returns a cold Observable: nothing touches Firestore until it is
subscribed, and each subscription runs the operation once.

- One-shot operations emit their result and complete; ``update``, ``delete``
  and ``write_transaction`` only complete.
- Listener observables emit on every change and complete when the listener
  is stopped or superseded. Disposing the subscription closes the listener.

Example:
    >>> reactive = ReactiveClient(DocumentClient())
    >>> subscription = reactive.listen_query(Message).subscribe(
    ...     on_next=render, on_error=report
    ... )
    >>> subscription.dispose()
"""

import asyncio
from typing import Any, Callable, Optional, Sequence, TypeVar

import reactivex
from reactivex import Observable, abc
from reactivex.disposable import Disposable

from easy_firestore.adapters.scheduling import on_done, schedule, start_listener
from easy_firestore.client import DocumentClient
from easy_firestore.listeners import ListenerStream
from easy_firestore.models import FirestoreModel
from easy_firestore.query import QueryFilter, QueryOrder

ModelT = TypeVar("ModelT", bound=FirestoreModel)
V = TypeVar("V")


class ReactiveClient:
    """
    Observable adapter over a DocumentClient.

    Args:
        client: The async client to drive
        loop: Event loop to run operations on when subscribing from another
            thread. Subscriptions made on the loop's own thread need no loop.
    """

    def __init__(
        self, client: DocumentClient, loop: Optional[asyncio.AbstractEventLoop] = None
    ):
        self.client = client
        self._loop = loop

    def _single(self, make_coro: Callable[[], Any], *, emit: bool = True) -> Observable[Any]:
        def subscribe(
            observer: abc.ObserverBase[Any], scheduler: Optional[abc.SchedulerBase] = None
        ) -> abc.DisposableBase:
            def success(result: Any) -> None:
                if emit:
                    observer.on_next(result)
                observer.on_completed()

            future = schedule(make_coro(), self._loop)
            on_done(future, success, observer.on_error)
            return Disposable(future.cancel)

        return reactivex.create(subscribe)

    def _stream(self, open_stream: Callable[[], ListenerStream[Any]]) -> Observable[Any]:
        def subscribe(
            observer: abc.ObserverBase[Any], scheduler: Optional[abc.SchedulerBase] = None
        ) -> abc.DisposableBase:
            future = start_listener(
                open_stream,
                observer.on_next,
                observer.on_error,
                observer.on_completed,
                self._loop,
            )
            return Disposable(future.cancel)

        return reactivex.create(subscribe)

    # Write

    def create(self, model: FirestoreModel, document_id: Optional[str] = None) -> Observable[Any]:
        return self._single(lambda: self.client.create(model, document_id))

    def write(self, model: FirestoreModel, document_id: Optional[str] = None) -> Observable[Any]:
        return self._single(lambda: self.client.write(model, document_id))

    def update(self, model: FirestoreModel) -> Observable[Any]:
        return self._single(lambda: self.client.update(model), emit=False)

    def delete(self, model: FirestoreModel) -> Observable[Any]:
        return self._single(lambda: self.client.delete(model), emit=False)

    def write_transaction(
        self, model: FirestoreModel, field: str, value: V, resolve: Callable[[V, V], V]
    ) -> Observable[Any]:
        return self._single(
            lambda: self.client.write_transaction(model, field, value, resolve), emit=False
        )

    # Read

    def get(
        self,
        model_type: type[ModelT],
        document_id: str,
        *,
        include_cache: bool = True,
        parent_ids: Sequence[str] = (),
    ) -> Observable[ModelT]:
        return self._single(
            lambda: self.client.get(
                model_type, document_id, include_cache=include_cache, parent_ids=parent_ids
            )
        )

    def query(
        self,
        model_type: type[ModelT],
        filters: Sequence[QueryFilter] = (),
        order: Sequence[QueryOrder] = (),
        limit: Optional[int] = None,
        *,
        include_cache: bool = True,
        parent_ids: Sequence[str] = (),
    ) -> Observable[list[ModelT]]:
        return self._single(
            lambda: self.client.query(
                model_type,
                filters,
                order,
                limit,
                include_cache=include_cache,
                parent_ids=parent_ids,
            )
        )

    def get_collection_group(
        self,
        model_type: type[ModelT],
        filters: Sequence[QueryFilter] = (),
        order: Sequence[QueryOrder] = (),
        limit: Optional[int] = None,
        *,
        include_cache: bool = True,
    ) -> Observable[list[ModelT]]:
        return self._single(
            lambda: self.client.get_collection_group(
                model_type, filters, order, limit, include_cache=include_cache
            )
        )

    # Listen

    def listen(
        self,
        model_type: type[ModelT],
        document_id: str,
        *,
        include_cache: bool = True,
        parent_ids: Sequence[str] = (),
    ) -> Observable[ModelT]:
        return self._stream(
            lambda: self.client.listen(
                model_type, document_id, include_cache=include_cache, parent_ids=parent_ids
            )
        )

    def listen_query(
        self,
        model_type: type[ModelT],
        filters: Sequence[QueryFilter] = (),
        order: Sequence[QueryOrder] = (),
        limit: Optional[int] = None,
        *,
        include_cache: bool = True,
        parent_ids: Sequence[str] = (),
    ) -> Observable[list[ModelT]]:
        return self._stream(
            lambda: self.client.listen_query(
                model_type,
                filters,
                order,
                limit,
                include_cache=include_cache,
                parent_ids=parent_ids,
            )
        )

    def listen_collection_group(
        self,
        model_type: type[ModelT],
        filters: Sequence[QueryFilter] = (),
        order: Sequence[QueryOrder] = (),
        limit: Optional[int] = None,
        *,
        include_cache: bool = True,
    ) -> Observable[list[ModelT]]:
        return self._stream(
            lambda: self.client.listen_collection_group(
                model_type, filters, order, limit, include_cache=include_cache
            )
        )
