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
Error types raised by the document client.

Errors coming from the Firestore SDK itself (google.api_core.exceptions)
are never wrapped; they reach the caller unchanged.
"""

from datetime import datetime
from typing import Any, Optional


class FirestoreClientError(Exception):
    """Base class for every error raised by easy_firestore."""


class AlreadyExistsError(FirestoreClientError):
    """create() was called on a model that already carries an identity."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Model already has a document reference: {path}")


class NoReferenceError(FirestoreClientError):
    """update()/delete() was called on a model without an identity."""

    def __init__(self, model_type: type):
        self.model_type = model_type
        super().__init__(
            f"{model_type.__name__} has no document id; persist it with create() or write() first"
        )


class InvalidTimestampError(FirestoreClientError):
    """
    Server-assigned timestamps are in the wrong state for the operation.

    Raised when create() receives a model with created_at/updated_at already
    set, or update() receives a model that was never created (no created_at).
    """

    def __init__(
        self,
        message: str,
        *,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ):
        self.created_at = created_at
        self.updated_at = updated_at
        super().__init__(message)


class NotFoundError(FirestoreClientError):
    """A single-document read targeted a document that does not exist."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Document not found: {path}")


class DecodeError(FirestoreClientError):
    """A stored document does not match the shape of the target model."""

    def __init__(
        self,
        model_type: type,
        path: str,
        data: Optional[dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        self.model_type = model_type
        self.path = path
        self.data = data
        self.cause = cause
        super().__init__(f"Failed to decode {path} as {model_type.__name__}: {cause}")


class ReferenceResolutionError(FirestoreClientError):
    """A sub-collection reference could not be computed."""
