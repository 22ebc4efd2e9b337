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
Tests for the callback and reactive bindings of DocumentClient.
"""

import asyncio
import concurrent.futures

import pytest
from reactivex import operators as ops
from structlog.testing import capture_logs

from easy_firestore.adapters import CallbackClient, ReactiveClient
from easy_firestore.adapters.scheduling import schedule
from easy_firestore.errors import NoReferenceError, NotFoundError
from easy_firestore.query import EqualFilter
from helpers import eventually
from sample_models import Comment, Message


def sink():
    """A future usable as success/failure callbacks from any thread."""
    future = concurrent.futures.Future()
    return future, future.set_result, future.set_exception


async def outcome(future, timeout: float = 1.0):
    return await asyncio.wait_for(asyncio.wrap_future(future), timeout)


class TestSchedule:
    """Test running coroutines from adapter calls."""

    def test_schedule_without_loop_raises(self):
        """Test calling outside a loop without a target loop is an error."""

        async def work():
            return 1

        with pytest.raises(RuntimeError, match="No running event loop"):
            schedule(work())

    @pytest.mark.asyncio
    async def test_schedule_from_another_thread(self):
        """Test a coroutine submitted from a worker thread runs on the loop."""
        loop = asyncio.get_running_loop()

        async def where():
            return asyncio.get_running_loop()

        future = await asyncio.to_thread(schedule, where(), loop)

        assert await asyncio.wrap_future(future) is loop


class TestCallbackClient:
    """Test the callback binding."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, client):
        """Test success callbacks receive the operation results."""
        callbacks = CallbackClient(client)
        created, success, failure = sink()
        callbacks.create(Message(text="hello"), success, failure)
        ref = await outcome(created)

        fetched, success, failure = sink()
        callbacks.get(Message, ref.id, success, failure)

        assert (await outcome(fetched)).text == "hello"

    @pytest.mark.asyncio
    async def test_errors_go_to_failure(self, client, fake_db):
        """Test typed errors are routed to the failure callback."""
        callbacks = CallbackClient(client)
        result, success, failure = sink()

        callbacks.update(Message(text="hello"), lambda: success(None), failure)

        with pytest.raises(NoReferenceError):
            await outcome(result)
        assert fake_db.writes == []

    @pytest.mark.asyncio
    async def test_delete_reports_completion(self, client):
        """Test no-result operations call success without arguments."""
        callbacks = CallbackClient(client)
        ref = await client.create(Message(text="hello"))
        message = await client.get(Message, ref.id)
        done, success, failure = sink()

        callbacks.delete(message, lambda: success("deleted"), failure)

        assert await outcome(done) == "deleted"
        with pytest.raises(NotFoundError):
            await client.get(Message, ref.id)

    @pytest.mark.asyncio
    async def test_calls_from_another_thread(self, client):
        """Test the adapter can be driven from a thread that has no loop."""
        callbacks = CallbackClient(client, loop=asyncio.get_running_loop())
        created, success, failure = sink()

        await asyncio.to_thread(callbacks.create, Message(text="threaded"), success, failure)
        ref = await outcome(created)

        assert (await client.get(Message, ref.id)).text == "threaded"

    @pytest.mark.asyncio
    async def test_listen_query_and_cancel(self, client):
        """Test listener callbacks see changes until the subscription is cancelled."""
        callbacks = CallbackClient(client)
        received, errors = [], []

        subscription = callbacks.listen_query(
            Message,
            received.append,
            errors.append,
            [EqualFilter(field_path="status", value="active")],
        )
        await eventually(lambda: len(received) == 1)
        await client.create(Message(text="on"))
        await eventually(lambda: len(received) == 2)

        subscription.cancel()
        await eventually(lambda: not subscription.active)

        assert received[0] == []
        assert [message.text for message in received[1]] == ["on"]
        assert errors == []
        assert len(client.registry) == 0

    @pytest.mark.asyncio
    async def test_listen_reports_errors(self, client, fake_db):
        """Test a failing document listener reports to on_error once."""
        fake_db.seed("messages/bad", {"text": 3})
        callbacks = CallbackClient(client)
        errors = []

        subscription = callbacks.listen(Message, "bad", lambda _: None, errors.append)
        await eventually(lambda: not subscription.active)

        assert len(errors) == 1
        assert len(client.registry) == 0

    @pytest.mark.asyncio
    async def test_collection_group(self, client, fake_db):
        """Test collection group reads and listeners through callbacks."""
        fake_db.seed("users/u1/posts/p1/comments/c1", {"body": "one"})
        callbacks = CallbackClient(client)
        result, success, failure = sink()
        received = []

        callbacks.get_collection_group(Comment, success, failure)
        subscription = callbacks.listen_collection_group(Comment, received.append, failure)

        assert [comment.id for comment in await outcome(result)] == ["c1"]
        await eventually(lambda: len(received) == 1)
        assert received[0][0].parent_ids == ("u1", "p1")
        subscription.cancel()
        await eventually(lambda: len(client.registry) == 0)

    @pytest.mark.asyncio
    async def test_stop_listening(self, client):
        """Test stopping through the adapter ends the subscription."""
        callbacks = CallbackClient(client)
        subscription = callbacks.listen(Message, "m1", lambda _: None, lambda _: None)
        assert len(client.registry) == 1

        assert callbacks.stop_listening(Message, "m1") == 1
        await eventually(lambda: not subscription.active)

    @pytest.mark.asyncio
    async def test_stop_right_after_listen(self, client):
        """Test a listener is registered by the time listen returns."""
        callbacks = CallbackClient(client)
        subscription = callbacks.listen(Message, "m1", lambda _: None, lambda _: None)

        assert callbacks.stop_listening(Message, "m1") == 1
        assert len(client.registry) == 0
        await eventually(lambda: not subscription.active)
        assert len(client.registry) == 0

    @pytest.mark.asyncio
    async def test_stop_right_after_listen_from_another_thread(self, client):
        """Test listen from a thread without a loop registers before returning."""
        callbacks = CallbackClient(client, loop=asyncio.get_running_loop())

        def listen_then_stop():
            subscription = callbacks.listen(Message, "m1", lambda _: None, lambda _: None)
            return subscription, callbacks.stop_listening(Message, "m1")

        subscription, stopped = await asyncio.to_thread(listen_then_stop)

        assert stopped == 1
        await eventually(lambda: not subscription.active)
        assert len(client.registry) == 0

    @pytest.mark.asyncio
    async def test_cancel_before_first_value(self, client):
        """Test cancelling at once still releases the listener."""
        callbacks = CallbackClient(client)
        received = []

        subscription = callbacks.listen_query(Message, received.append, lambda _: None)
        subscription.cancel()
        await eventually(lambda: len(client.registry) == 0)

        assert not subscription.active
        assert received == []

    @pytest.mark.asyncio
    async def test_failing_on_next_goes_to_on_error(self, client):
        """Test an exception raised by on_next ends the subscription through on_error."""
        callbacks = CallbackClient(client)
        errors = []

        def on_next(messages):
            raise ValueError("render failed")

        with capture_logs() as logs:
            subscription = callbacks.listen_query(Message, on_next, errors.append)
            await eventually(lambda: not subscription.active)

        assert [str(error) for error in errors] == ["render failed"]
        assert len(client.registry) == 0
        failures = [log for log in logs if log["event"] == "listener_callback_failed"]
        assert len(failures) == 1
        assert failures[0]["log_level"] == "error"
        assert failures[0]["collection"] == "messages"


class TestReactiveClient:
    """Test the ReactiveX binding."""

    @pytest.mark.asyncio
    async def test_create_emits_reference_and_completes(self, client):
        """Test one-shot observables emit once, then complete."""
        reactive = ReactiveClient(client)
        events = []

        reactive.create(Message(text="hello")).subscribe(
            on_next=lambda ref: events.append(("next", ref.id)),
            on_completed=lambda: events.append(("completed", None)),
        )
        await eventually(lambda: len(events) == 2)

        assert events[0][0] == "next"
        assert events[1] == ("completed", None)

    @pytest.mark.asyncio
    async def test_observables_are_cold(self, client, fake_db):
        """Test nothing is written until the observable is subscribed."""
        reactive = ReactiveClient(client)
        observable = reactive.create(Message(text="hello"))
        await asyncio.sleep(0.01)
        assert fake_db.writes == []

        completed = []
        observable.subscribe(on_completed=lambda: completed.append(True))
        await eventually(lambda: completed == [True])

        assert len(fake_db.writes) == 1

    @pytest.mark.asyncio
    async def test_update_only_completes(self, client):
        """Test update, delete and write_transaction emit no value."""
        reactive = ReactiveClient(client)
        ref = await client.create(Message(text="hello", likes=1))
        message = await client.get(Message, ref.id)
        values, completed = [], []

        reactive.write_transaction(message, "likes", 2, lambda stored, new: stored + new).subscribe(
            on_next=values.append, on_completed=lambda: completed.append(True)
        )
        await eventually(lambda: completed == [True])

        assert values == []
        assert (await client.get(Message, ref.id)).likes == 3

    @pytest.mark.asyncio
    async def test_errors_go_to_on_error(self, client):
        """Test typed errors terminate the observable."""
        reactive = ReactiveClient(client)
        errors = []

        reactive.delete(Message(text="hello")).subscribe(on_error=errors.append)
        await eventually(lambda: len(errors) == 1)

        assert isinstance(errors[0], NoReferenceError)

    @pytest.mark.asyncio
    async def test_query_composes_with_operators(self, client, fake_db):
        """Test results flow through ReactiveX operators."""
        fake_db.seed("messages/a", {"text": "a"})
        fake_db.seed("messages/b", {"text": "b"})
        reactive = ReactiveClient(client)
        counts = []

        reactive.query(Message).pipe(ops.map(len)).subscribe(on_next=counts.append)
        await eventually(lambda: counts == [2])

    @pytest.mark.asyncio
    async def test_listen_query_until_disposed(self, client):
        """Test disposing a listener subscription releases the listener."""
        reactive = ReactiveClient(client)
        received = []

        subscription = reactive.listen_query(Message).subscribe(on_next=received.append)
        await eventually(lambda: len(received) == 1)
        await client.create(Message(text="on"))
        await eventually(lambda: len(received) == 2)

        subscription.dispose()
        await eventually(lambda: len(client.registry) == 0)

        assert [message.text for message in received[1]] == ["on"]

    @pytest.mark.asyncio
    async def test_listener_completes_when_stopped(self, client):
        """Test a stopped listener completes its observable."""
        reactive = ReactiveClient(client)
        completed = []

        reactive.listen(Message, "m1").subscribe(on_completed=lambda: completed.append(True))
        assert len(client.registry) == 1

        client.stop_listening_all()
        await eventually(lambda: completed == [True])

    @pytest.mark.asyncio
    async def test_stop_right_after_subscribe(self, client):
        """Test a subscribed listener can be stopped before the loop runs again."""
        reactive = ReactiveClient(client)
        completed = []

        reactive.listen(Message, "m1").subscribe(on_completed=lambda: completed.append(True))

        assert client.stop_listening_all() == 1
        await eventually(lambda: completed == [True])
        assert len(client.registry) == 0

    @pytest.mark.asyncio
    async def test_failing_on_next_goes_to_on_error(self, client):
        """Test an observer whose on_next raises receives the error."""
        reactive = ReactiveClient(client)
        errors = []

        def on_next(messages):
            raise ValueError("render failed")

        reactive.listen_query(Message).subscribe(on_next=on_next, on_error=errors.append)
        await eventually(lambda: len(errors) == 1)

        assert str(errors[0]) == "render failed"
        await eventually(lambda: len(client.registry) == 0)
