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
Real-time listener bookkeeping.

Firestore delivers snapshots through callbacks on SDK-managed threads. This
module bridges those callbacks into asyncio and keeps at most one live
listener per logical key:

- ListenerKey identifies a document listener or a query listener.
- ListenerStream is an async iterator fed from SDK threads through
  ``loop.call_soon_threadsafe``. It owns the SDK watch and, when cancelled,
  unsubscribes it in a worker thread so the event loop never waits on SDK
  shutdown.
- ListenerRegistry maps each key to its single active stream. Registering a
  key that is already active cancels the previous stream first.

State per key:

    Unregistered --register--> Active(stream)
    Active --register (same key) | stop | consumer close--> Unregistered
"""

import asyncio
import threading
from typing import Any, Callable, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict

from easy_firestore.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class ListenerKey(BaseModel):
    """
    Logical identity of a listener.

    Document listeners are keyed by collection path and document id; query
    listeners by the canonical query key produced by ``query.query_key``.
    """

    model_config = ConfigDict(frozen=True)

    collection: str
    path: str
    document_id: Optional[str] = None
    query: Optional[str] = None

    @classmethod
    def for_document(cls, collection: str, path: str, document_id: str) -> "ListenerKey":
        return cls(collection=collection, path=path, document_id=document_id)

    @classmethod
    def for_query(cls, collection: str, path: str, canonical: str) -> "ListenerKey":
        return cls(collection=collection, path=path, query=canonical)

    @property
    def is_document(self) -> bool:
        return self.document_id is not None


class _Failure:
    __slots__ = ("error",)

    def __init__(self, error: BaseException):
        self.error = error


_END = object()


class ListenerStream(Generic[T]):
    """
    Async iterator over the values delivered by one Firestore listener.

    Producer methods (``emit``, ``fail``, ``cancel``) may be called from any
    thread. Consumption happens on the event loop that created the stream.

    The stream ends:
    - without error when it is cancelled (stopped, superseded by a newer
      listener for the same key, or closed by its consumer); values still
      buffered at that point are dropped
    - with the error passed to ``fail`` otherwise

    Closing the stream (``aclose()``, leaving ``async with``, or cancelling the
    task awaiting the next value) releases its registry entry and
    unsubscribes the SDK watch.

    Example:
        >>> async with client.listen(Message, "abc") as stream:
        ...     async for message in stream:
        ...         print(message.text)
    """

    def __init__(self, key: ListenerKey, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.key = key
        self._loop = loop or asyncio.get_running_loop()
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._lock = threading.Lock()
        self._cancelled = False
        self._finished = False
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._release: Optional[Callable[["ListenerStream[T]"], None]] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def attach(self, unsubscribe: Callable[[], None]) -> None:
        """Hand the SDK unsubscribe callable to the stream."""
        with self._lock:
            if not self._cancelled:
                self._unsubscribe = unsubscribe
                return
        self._unsubscribe_later(unsubscribe)

    def bind_release(self, release: Callable[["ListenerStream[T]"], None]) -> None:
        self._release = release

    # Producer side

    def emit(self, value: T) -> None:
        if not self._cancelled:
            self._post(value)

    def fail(self, error: BaseException) -> None:
        if not self._cancelled:
            self._post(_Failure(error))

    def cancel(self) -> None:
        """
        End the stream and schedule the SDK unsubscribe. Idempotent.

        Returns at once: the stream stops delivering immediately, while the
        unsubscribe (which joins SDK threads) runs in the loop's default
        executor.
        """
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            self._unsubscribe_later(unsubscribe)
        self._post(_END)

    def _unsubscribe_later(self, unsubscribe: Callable[[], None]) -> None:
        try:
            self._loop.call_soon_threadsafe(self._run_unsubscribe, unsubscribe)
        except RuntimeError:
            # Loop closed: nothing left to block
            unsubscribe()

    def _run_unsubscribe(self, unsubscribe: Callable[[], None]) -> None:
        future = self._loop.run_in_executor(None, unsubscribe)
        future.add_done_callback(self._log_unsubscribe_failure)

    def _log_unsubscribe_failure(self, future: "asyncio.Future[None]") -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(
                "listener_unsubscribe_failed",
                collection=self.key.path,
                document_id=self.key.document_id,
                error=str(error),
            )

    def _post(self, entry: Any) -> None:
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, entry)
        except RuntimeError:
            logger.debug(
                "listener_event_dropped",
                reason="event loop closed",
                collection=self.key.path,
            )

    # Consumer side

    def close(self) -> None:
        """Cancel the stream and release its registry entry."""
        self.cancel()
        release, self._release = self._release, None
        if release is not None:
            release(self)

    async def aclose(self) -> None:
        self.close()

    def __aiter__(self) -> "ListenerStream[T]":
        return self

    async def __anext__(self) -> T:
        if self._finished or self._cancelled:
            self._finish()
            raise StopAsyncIteration

        try:
            entry = await self._queue.get()
        except asyncio.CancelledError:
            self._finish()
            raise

        if entry is _END or self._cancelled:
            self._finish()
            raise StopAsyncIteration
        if isinstance(entry, _Failure):
            self._finish()
            raise entry.error
        return entry

    def _finish(self) -> None:
        self._finished = True
        self.close()

    async def __aenter__(self) -> "ListenerStream[T]":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.close()


class ListenerRegistry:
    """
    Single active listener per key, guarded by a lock.

    All mutation goes through ``register``, ``stop``, ``stop_matching``,
    ``stop_all`` and ``release``; SDK callbacks never touch the registry.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._streams: dict[ListenerKey, ListenerStream[Any]] = {}

    def register(
        self, key: ListenerKey, factory: Callable[[], ListenerStream[T]]
    ) -> ListenerStream[T]:
        """
        Install the stream built by ``factory`` as the listener for ``key``.

        An active listener for the same key is cancelled before ``factory``
        runs, so the two never deliver events side by side.

        Args:
            key: The listener key
            factory: Builds the new stream and subscribes its SDK watch

        Returns:
            The newly installed stream
        """
        with self._lock:
            previous = self._streams.pop(key, None)
            if previous is not None:
                previous.cancel()
                logger.debug("listener_replaced", collection=key.path, document_id=key.document_id)
            stream = factory()
            stream.bind_release(self.release)
            self._streams[key] = stream
        return stream

    def stop(self, key: ListenerKey) -> bool:
        """Cancel the listener for ``key``. Returns False if none was active."""
        with self._lock:
            stream = self._streams.pop(key, None)
            if stream is None:
                return False
            stream.cancel()
        return True

    def stop_matching(self, predicate: Callable[[ListenerKey], bool]) -> int:
        """Cancel every listener whose key satisfies ``predicate``."""
        with self._lock:
            keys = [key for key in self._streams if predicate(key)]
            for key in keys:
                self._streams.pop(key).cancel()
        return len(keys)

    def stop_all(self) -> int:
        """Cancel every active listener; the registry is empty afterwards."""
        with self._lock:
            streams = list(self._streams.values())
            self._streams.clear()
            for stream in streams:
                stream.cancel()
        return len(streams)

    def release(self, stream: ListenerStream[Any]) -> None:
        """
        Drop ``stream`` from the registry if it is still the active entry
        for its key. A superseded stream never evicts its successor.
        """
        with self._lock:
            if self._streams.get(stream.key) is stream:
                del self._streams[stream.key]
        stream.cancel()

    def get(self, key: ListenerKey) -> Optional[ListenerStream[Any]]:
        with self._lock:
            return self._streams.get(key)

    def keys(self) -> list[ListenerKey]:
        with self._lock:
            return list(self._streams)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._streams

    def __len__(self) -> int:
        with self._lock:
            return len(self._streams)
