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
Shared plumbing for the callback and reactive adapters.

Both adapters drive DocumentClient coroutines on an event loop and pump
ListenerStreams into plain callables. Listeners are opened eagerly, on the
loop thread, before the adapter call returns, so a stop issued right after
a listen always finds the registry entry.
"""

import asyncio
import concurrent.futures
from typing import Any, Callable, Coroutine, Optional, TypeVar, Union

from easy_firestore.listeners import ListenerStream
from easy_firestore.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

AnyFuture = Union["asyncio.Future[Any]", "concurrent.futures.Future[Any]"]


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def _on_loop_thread(loop: Optional[asyncio.AbstractEventLoop]) -> bool:
    running = _running_loop()
    return running is not None and (loop is None or loop is running)


def _require_loop(loop: Optional[asyncio.AbstractEventLoop]) -> asyncio.AbstractEventLoop:
    if loop is None:
        raise RuntimeError(
            "No running event loop in this thread; construct the adapter with loop="
        )
    return loop


def schedule(
    coro: Coroutine[Any, Any, T], loop: Optional[asyncio.AbstractEventLoop] = None
) -> AnyFuture:
    """
    Run ``coro`` on an event loop without awaiting it.

    On the loop's own thread this creates a Task; from any other thread it
    submits the coroutine to ``loop`` with ``run_coroutine_threadsafe``.

    Raises:
        RuntimeError: If called outside a running loop and no loop was given
    """
    if _on_loop_thread(loop):
        return asyncio.get_running_loop().create_task(coro)
    try:
        target = _require_loop(loop)
    except RuntimeError:
        coro.close()
        raise
    return asyncio.run_coroutine_threadsafe(coro, target)


def open_listener(
    open_stream: Callable[[], ListenerStream[T]],
    loop: Optional[asyncio.AbstractEventLoop] = None,
) -> ListenerStream[T]:
    """
    Register a listener on the loop thread and return its stream.

    From another thread the registration is submitted to ``loop`` and this
    call blocks until it has happened. Registration errors (for example
    ReferenceResolutionError) are raised to the caller.
    """
    if _on_loop_thread(loop):
        return open_stream()

    async def opened() -> ListenerStream[T]:
        return open_stream()

    return asyncio.run_coroutine_threadsafe(opened(), _require_loop(loop)).result()


def on_done(
    future: AnyFuture,
    success: Callable[[Any], None],
    failure: Callable[[BaseException], None],
) -> None:
    """Route the outcome of ``future`` to ``success`` or ``failure``. Cancellation calls neither."""

    def done(f: AnyFuture) -> None:
        if f.cancelled():
            return
        error = f.exception()
        if error is not None:
            failure(error)
        else:
            success(f.result())

    future.add_done_callback(done)


async def pump(
    stream: ListenerStream[T],
    on_next: Callable[[T], None],
    on_error: Callable[[BaseException], None],
    on_completed: Optional[Callable[[], None]] = None,
) -> None:
    """
    Forward the values of an open listener stream until it ends.

    Stream errors go to ``on_error``; a clean end calls ``on_completed``.
    An exception raised by ``on_next`` is logged, passed to ``on_error``
    and ends the subscription. Cancelling the task running this coroutine
    closes the stream, which releases its registry entry.
    """
    async with stream:
        while True:
            try:
                value = await anext(stream)
            except StopAsyncIteration:
                break
            except Exception as exc:
                on_error(exc)
                return
            try:
                on_next(value)
            except Exception as exc:
                logger.exception("listener_callback_failed", collection=stream.key.path)
                on_error(exc)
                return
    if on_completed is not None:
        on_completed()


def start_listener(
    open_stream: Callable[[], ListenerStream[T]],
    on_next: Callable[[T], None],
    on_error: Callable[[BaseException], None],
    on_completed: Optional[Callable[[], None]] = None,
    loop: Optional[asyncio.AbstractEventLoop] = None,
) -> AnyFuture:
    """
    Open a listener now and pump it into callables in the background.

    The returned future finishes when the subscription ends. Cancelling it
    closes the stream even if the pump never got to run.
    """
    stream = open_listener(open_stream, loop)
    future = schedule(pump(stream, on_next, on_error, on_completed), loop)
    future.add_done_callback(lambda _: stream.close())
    return future
