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
Firestore client module with lazy initialization.

Provides a singleton Firestore client instance that is lazily initialized
on first use. Supports both production (Application Default Credentials)
and local development (Firestore emulator) configurations.

Also provides the transaction runner used for read-modify-write updates.
"""

import os
import threading
from typing import Callable, Optional, TypeVar

from google.cloud import firestore  # type: ignore[import-untyped]

from easy_firestore.config import get_settings
from easy_firestore.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Module-level singleton client and lock for thread safety
_firestore_client: Optional[firestore.Client] = None
_firestore_lock = threading.Lock()


def get_firestore_client() -> firestore.Client:
    """
    Get or create a Firestore client instance with thread-safe lazy initialization.

    Configuration:
    - Uses GCP_PROJECT_ID and FIRESTORE_DATABASE from settings
    - Supports Firestore emulator via FIRESTORE_EMULATOR_HOST
    - Uses Application Default Credentials (ADC) in production

    Returns:
        firestore.Client: The initialized Firestore client

    Raises:
        ValueError: If GCP_PROJECT_ID is not set and no emulator is configured

    Example:
        >>> client = get_firestore_client()
        >>> doc_ref = client.collection('messages').document('doc1')
    """
    global _firestore_client

    # Double-checked locking
    if _firestore_client is None:
        with _firestore_lock:
            if _firestore_client is None:
                settings = get_settings()

                emulator_host = settings.firestore_emulator_host
                if emulator_host:
                    os.environ["FIRESTORE_EMULATOR_HOST"] = emulator_host
                    # For emulator, project_id can be any non-empty string
                    project_id = settings.gcp_project_id or "demo-project"
                else:
                    project_id = settings.gcp_project_id
                    if not project_id:
                        raise ValueError(
                            "GCP_PROJECT_ID must be set when not using Firestore emulator. "
                            "Set FIRESTORE_EMULATOR_HOST for local development."
                        )

                _firestore_client = firestore.Client(
                    project=project_id, database=settings.firestore_database
                )
                logger.info(
                    "firestore_client_initialized",
                    project_id=project_id,
                    database=settings.firestore_database,
                    emulator=bool(emulator_host),
                )

    return _firestore_client


def reset_firestore_client() -> None:
    """
    Reset the Firestore client singleton in a thread-safe manner.

    Primarily used by tests to pick up new settings. Listeners opened on the
    previous client keep running until they are stopped.
    """
    global _firestore_client
    with _firestore_lock:
        _firestore_client = None


def run_transaction(
    client: firestore.Client, update: Callable[[firestore.Transaction], T]
) -> T:
    """
    Run ``update`` inside a Firestore transaction.

    Conflicting concurrent writes make the SDK roll back and call ``update``
    again with a fresh transaction, up to its retry limit; the last failure
    is raised to the caller. Blocking: call from a worker thread when on an
    event loop.

    Args:
        client: The Firestore client
        update: Reads through the transaction and stages its writes on it

    Returns:
        Whatever ``update`` returns from the committed attempt
    """
    transaction = client.transaction()
    return firestore.transactional(update)(transaction)
