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
In-memory fake of the synchronous google-cloud-firestore Client.

Implements the SDK surface used by easy_firestore so a DocumentClient (and
the adapters built on it) can run without network access or an emulator:
- Collections, documents and nested sub-collections
- Collection group queries
- where(filter=FieldFilter(...)) with ==, >, < and in
- order_by, limit and stream
- set (with merge), get (optionally inside a transaction) and delete
- SERVER_TIMESTAMP resolved against a fake clock that advances on every write
- on_snapshot watches that deliver the current state immediately and again
  whenever a write changes what they observe; ``FakeWatch.fire`` forces a
  delivery with chosen metadata or raw data
- Transactions, driven by the fake_transactional decorator, with
  ``conflicts`` to force retries

Failures and latency are controllable:
- ``set_next_error`` makes the next SDK call (optionally of one operation
  kind) raise the given exception, once
- ``delay`` makes every SDK call block for that many seconds

Example:
    >>> db = FakeFirestoreClient()
    >>> client = DocumentClient(client=db)
    >>> db.set_next_error(Unavailable("backend down"), operation="set")
    >>> with patch_transactions():
    ...     await client.write_transaction(message, "likes", 1, add)
"""

import threading
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterator, Optional
from unittest import mock

from google.cloud import firestore

# Operation kinds accepted by FakeFirestoreClient.set_next_error
OPERATIONS = ("get", "set", "delete", "query", "commit", "listen")

EPOCH = datetime(2026, 1, 1, tzinfo=timezone.utc)

_UNSET = object()


class FakeMetadata:
    """Snapshot metadata as reported by the client-side SDKs."""

    def __init__(self, from_cache: bool = False, has_pending_writes: bool = False):
        self.from_cache = from_cache
        self.has_pending_writes = has_pending_writes


class FakeDocumentSnapshot:
    def __init__(
        self,
        reference: "FakeDocumentRef",
        data: Optional[dict[str, Any]],
        metadata: Optional[FakeMetadata] = None,
    ):
        self.reference = reference
        self.id = reference.id
        self._data = data
        self.exists = data is not None
        if metadata is not None:
            self.metadata = metadata

    def to_dict(self) -> Optional[dict[str, Any]]:
        if self._data is None:
            return None
        return dict(self._data)


class FakeWatch:
    """Result of on_snapshot(); mirrors google.cloud.firestore_v1.watch.Watch."""

    def __init__(
        self,
        client: "FakeFirestoreClient",
        snapshots: Callable[[], list[FakeDocumentSnapshot]],
        callback: Callable[..., None],
    ):
        self._client = client
        self._snapshots = snapshots
        self._callback = callback
        self._last: Any = _UNSET
        self.unsubscribed = False
        self.deliveries = 0

    def unsubscribe(self) -> None:
        self.unsubscribed = True
        self._client._remove_watch(self)

    def fire(
        self,
        read_time: Any = _UNSET,
        metadata: Optional[FakeMetadata] = None,
        data: Optional[dict[str, dict[str, Any]]] = None,
    ) -> None:
        """
        Deliver the current state to the callback unconditionally.

        Tests use this to simulate cache-served or pending-write deliveries,
        or (with data, keyed by document path) deliveries of raw documents.
        """
        if self.unsubscribed:
            return
        snapshots = self._snapshots()
        if metadata is not None:
            for snapshot in snapshots:
                snapshot.metadata = metadata
        if data is not None:
            snapshots = [
                FakeDocumentSnapshot(FakeDocumentRef(self._client, path), body, metadata)
                for path, body in data.items()
            ]
        if read_time is _UNSET:
            read_time = self._client.now()
        self.deliveries += 1
        self._callback(snapshots, [], read_time)

    def refresh(self) -> None:
        """Deliver only if what the watch observes changed since the last delivery."""
        if self.unsubscribed:
            return
        snapshots = self._snapshots()
        signature = [(s.reference.path, s.to_dict()) for s in snapshots]
        if signature == self._last:
            return
        self._last = signature
        self.deliveries += 1
        self._callback(snapshots, [], self._client.now())


class FakeQuery:
    def __init__(
        self,
        client: "FakeFirestoreClient",
        path: Optional[str] = None,
        group: Optional[str] = None,
        filters: tuple = (),
        orders: tuple = (),
        limit_count: Optional[int] = None,
    ):
        self._client = client
        self._path = path
        self._group = group
        self._filters = filters
        self._orders = orders
        self._limit = limit_count

    def _copy(self, **changes: Any) -> "FakeQuery":
        params = dict(
            path=self._path,
            group=self._group,
            filters=self._filters,
            orders=self._orders,
            limit_count=self._limit,
        )
        params.update(changes)
        return FakeQuery(self._client, **params)

    def where(self, *, filter: Any) -> "FakeQuery":
        return self._copy(
            filters=self._filters + ((filter.field_path, filter.op_string, filter.value),)
        )

    def order_by(self, field_path: str, direction: str = "ASCENDING") -> "FakeQuery":
        return self._copy(orders=self._orders + ((field_path, direction),))

    def limit(self, count: int) -> "FakeQuery":
        return self._copy(limit_count=count)

    def stream(self):
        self._client._before("query")
        return iter(self._snapshots())

    def get(self) -> list[FakeDocumentSnapshot]:
        self._client._before("query")
        return self._snapshots()

    def on_snapshot(self, callback: Callable[..., None]) -> FakeWatch:
        self._client._before("listen")
        return self._client._add_watch(self._snapshots, callback)

    # Evaluation

    def _in_scope(self, path: str) -> bool:
        segments = path.split("/")
        if self._group is not None:
            return len(segments) >= 2 and segments[-2] == self._group
        return path.rsplit("/", 1)[0] == self._path

    def _snapshots(self) -> list[FakeDocumentSnapshot]:
        with self._client.lock:
            rows = [
                (path, dict(data))
                for path, data in sorted(self._client.store.items())
                if self._in_scope(path)
            ]

        rows = [row for row in rows if all(_matches(row[1], f) for f in self._filters)]
        for field_path, direction in reversed(self._orders):
            rows = [row for row in rows if _lookup(row[1], field_path) is not _UNSET]
            rows.sort(
                key=lambda row: _lookup(row[1], field_path),
                reverse=direction == firestore.Query.DESCENDING,
            )
        if self._limit is not None:
            rows = rows[: self._limit]

        return [
            FakeDocumentSnapshot(FakeDocumentRef(self._client, path), data)
            for path, data in rows
        ]


class FakeCollectionRef(FakeQuery):
    def __init__(self, client: "FakeFirestoreClient", path: str):
        super().__init__(client, path=path)
        self.path = path
        self.id = path.rsplit("/", 1)[-1]

    def document(self, document_id: Optional[str] = None) -> "FakeDocumentRef":
        if document_id is None:
            document_id = uuid.uuid4().hex[:20]
        return FakeDocumentRef(self._client, f"{self.path}/{document_id}")


class FakeDocumentRef:
    def __init__(self, client: "FakeFirestoreClient", path: str):
        self._client = client
        self.path = path
        self.id = path.rsplit("/", 1)[-1]

    def collection(self, name: str) -> FakeCollectionRef:
        return FakeCollectionRef(self._client, f"{self.path}/{name}")

    def get(self, transaction: Any = None) -> FakeDocumentSnapshot:
        self._client._before("get")
        return self._read()

    def _read(self) -> FakeDocumentSnapshot:
        with self._client.lock:
            data = self._client.store.get(self.path)
            return FakeDocumentSnapshot(self, dict(data) if data is not None else None)

    def set(self, data: dict[str, Any], merge: bool = False) -> None:
        self._client._before("set")
        self._client.write(self.path, data, merge)

    def delete(self) -> None:
        self._client._before("delete")
        self._client.delete(self.path)

    def on_snapshot(self, callback: Callable[..., None]) -> FakeWatch:
        self._client._before("listen")
        return self._client._add_watch(lambda: [self._read()], callback)


class FakeTransaction:
    def __init__(self, client: "FakeFirestoreClient"):
        self._client = client
        self._writes: list[tuple[str, dict[str, Any], bool]] = []
        self.committed = False

    def set(self, reference: FakeDocumentRef, data: dict[str, Any], merge: bool = False) -> None:
        self._writes.append((reference.path, dict(data), merge))

    def commit(self) -> None:
        self._client._before("commit")
        if self._client.conflicts:
            conflict = self._client.conflicts.pop(0)
            conflict()
            raise TransactionConflict()
        for path, data, merge in self._writes:
            self._client.write(path, data, merge)
        self.committed = True


class TransactionConflict(Exception):
    """A concurrent write invalidated the transaction's reads."""


def fake_transactional(update: Callable[[FakeTransaction], Any], max_attempts: int = 5):
    """Stand-in for firestore.transactional that retries on simulated conflicts."""

    def run(transaction: FakeTransaction, *args: Any, **kwargs: Any) -> Any:
        client = transaction._client
        for attempt in range(max_attempts):
            attempt_transaction = transaction if attempt == 0 else FakeTransaction(client)
            result = update(attempt_transaction, *args, **kwargs)
            try:
                attempt_transaction.commit()
            except TransactionConflict:
                continue
            return result
        raise TransactionConflict(f"Transaction failed after {max_attempts} attempts")

    return run


@contextmanager
def patch_transactions() -> Iterator[None]:
    """Route firestore.transactional to fake_transactional within the block."""
    with mock.patch.object(firestore, "transactional", fake_transactional):
        yield


class FakeFirestoreClient:
    """
    Drop-in replacement for google.cloud.firestore.Client.

    Args:
        delay: Seconds every SDK call blocks before running, to simulate
            network latency
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.lock = threading.RLock()
        self.store: dict[str, dict[str, Any]] = {}
        self.watches: list[FakeWatch] = []
        self.writes: list[tuple[str, str]] = []
        # Callables run (then discarded) when a transaction commits, forcing a retry
        self.conflicts: list[Callable[[], None]] = []
        self.delay = delay
        self._next_errors: list[tuple[Optional[str], BaseException]] = []
        self._ticks = 0

    def now(self) -> datetime:
        return EPOCH + timedelta(seconds=self._ticks)

    def set_next_error(self, error: BaseException, operation: Optional[str] = None) -> None:
        """
        Make the next matching SDK call raise ``error`` instead of running.

        Each queued error is raised once, in the order queued. With an
        operation (one of OPERATIONS) only calls of that kind consume it;
        without one, the next call of any kind does.
        """
        if operation is not None and operation not in OPERATIONS:
            raise ValueError(f"Unknown operation {operation!r}; expected one of {OPERATIONS}")
        with self.lock:
            self._next_errors.append((operation, error))

    def _before(self, operation: str) -> None:
        if self.delay:
            time.sleep(self.delay)
        with self.lock:
            for index, (kind, error) in enumerate(self._next_errors):
                if kind is None or kind == operation:
                    del self._next_errors[index]
                    raise error

    def collection(self, name: str) -> FakeCollectionRef:
        return FakeCollectionRef(self, name)

    def collection_group(self, name: str) -> FakeQuery:
        return FakeQuery(self, group=name)

    def document(self, path: str) -> FakeDocumentRef:
        return FakeDocumentRef(self, path)

    def transaction(self) -> FakeTransaction:
        return FakeTransaction(self)

    # Mutation

    def write(self, path: str, data: dict[str, Any], merge: bool = False) -> None:
        with self.lock:
            self._ticks += 1
            stamp = self.now()
            resolved = {
                key: stamp if value is firestore.SERVER_TIMESTAMP else value
                for key, value in data.items()
            }
            existing = self.store.get(path)
            if merge and existing is not None:
                merged = dict(existing)
                merged.update(resolved)
                resolved = merged
            self.store[path] = resolved
            self.writes.append(("set", path))
        self._refresh()

    def delete(self, path: str) -> None:
        with self.lock:
            self.store.pop(path, None)
            self.writes.append(("delete", path))
        self._refresh()

    def seed(self, path: str, data: dict[str, Any]) -> None:
        """Store raw data without recording a write or notifying watches."""
        with self.lock:
            self.store[path] = dict(data)

    # Watches

    def _add_watch(
        self, snapshots: Callable[[], list[FakeDocumentSnapshot]], callback: Callable[..., None]
    ) -> FakeWatch:
        watch = FakeWatch(self, snapshots, callback)
        with self.lock:
            self.watches.append(watch)
        watch.refresh()
        return watch

    def _remove_watch(self, watch: FakeWatch) -> None:
        with self.lock:
            if watch in self.watches:
                self.watches.remove(watch)

    def _refresh(self) -> None:
        with self.lock:
            watches = list(self.watches)
        for watch in watches:
            watch.refresh()


def _lookup(data: dict[str, Any], field_path: str) -> Any:
    value: Any = data
    for part in field_path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _UNSET
        value = value[part]
    return value


def _matches(data: dict[str, Any], condition: tuple[str, str, Any]) -> bool:
    field_path, op, expected = condition
    value = _lookup(data, field_path)
    if value is _UNSET:
        return False
    try:
        if op == "==":
            return value == expected
        if op == ">":
            return value > expected
        if op == "<":
            return value < expected
        if op == "in":
            return value in expected
    except TypeError:
        return False
    raise ValueError(f"Unsupported operator: {op}")
