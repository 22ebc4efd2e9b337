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
"""Shared fixtures: an in-memory Firestore and a DocumentClient bound to it."""

import pytest

from easy_firestore.client import DocumentClient
from easy_firestore.config import get_settings
from easy_firestore.firestore import reset_firestore_client
from easy_firestore.testing import FakeFirestoreClient, patch_transactions


@pytest.fixture
def fake_db() -> FakeFirestoreClient:
    return FakeFirestoreClient()


@pytest.fixture(autouse=True)
def fake_transactions():
    """Replace firestore.transactional so run_transaction drives FakeTransaction."""
    with patch_transactions():
        yield


@pytest.fixture
def client(fake_db: FakeFirestoreClient) -> DocumentClient:
    return DocumentClient(client=fake_db)


@pytest.fixture
def clean_settings(monkeypatch):
    """Clear cached settings and the SDK client singleton around a test."""
    for name in (
        "SERVICE_ENVIRONMENT",
        "SERVICE_NAME",
        "GCP_PROJECT_ID",
        "FIRESTORE_DATABASE",
        "FIRESTORE_EMULATOR_HOST",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    reset_firestore_client()
    yield monkeypatch
    get_settings.cache_clear()
    reset_firestore_client()
