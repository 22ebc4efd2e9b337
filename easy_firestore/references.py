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
Reference resolution for model types.

Turns a model type plus its document id (and, for sub-collection models, the
ids of its ancestor documents) into Firestore collection and document
references:

    messages/{id}
    users/{user_id}/posts/{post_id}/comments/{id}
"""

from typing import Any, Optional, Sequence

from google.cloud import firestore  # type: ignore[import-untyped]

from easy_firestore.errors import ReferenceResolutionError
from easy_firestore.models import FirestoreModel, SubCollectionModel, parent_ids_from_path

__all__ = [
    "collection_chain",
    "collection_path",
    "resolve_collection",
    "resolve_document",
    "parent_ids_from_path",
]


def collection_chain(model_type: type[FirestoreModel]) -> list[type[FirestoreModel]]:
    """
    Walk the parent_model chain of ``model_type``.

    Returns:
        The model types from the top-level collection down to ``model_type``

    Raises:
        ReferenceResolutionError: If a sub-collection model declares no
            parent_model, or the chain loops back on itself
    """
    chain = [model_type]
    current: type[FirestoreModel] = model_type
    while issubclass(current, SubCollectionModel):
        parent = getattr(current, "parent_model", None)
        if parent is None:
            raise ReferenceResolutionError(
                f"{current.__name__} is a SubCollectionModel but declares no parent_model"
            )
        if parent in chain:
            raise ReferenceResolutionError(
                f"Cyclic parent_model chain at {current.__name__} -> {parent.__name__}"
            )
        chain.insert(0, parent)
        current = parent
    return chain


def _segments(model_type: type[FirestoreModel], parent_ids: Sequence[str]) -> list[str]:
    chain = collection_chain(model_type)
    expected = len(chain) - 1
    if len(parent_ids) != expected:
        raise ReferenceResolutionError(
            f"{model_type.__name__} needs {expected} parent id(s) "
            f"({' -> '.join(t.__name__ for t in chain[:-1]) or 'none'}), got {len(parent_ids)}"
        )

    segments: list[str] = []
    for ancestor, ancestor_id in zip(chain[:-1], parent_ids):
        if not ancestor_id:
            raise ReferenceResolutionError(
                f"Missing {ancestor.__name__} id while resolving {model_type.__name__}"
            )
        segments.extend([ancestor.collection_name, ancestor_id])
    segments.append(model_type.collection_name)
    return segments


def collection_path(
    model_type: type[FirestoreModel], parent_ids: Sequence[str] = ()
) -> str:
    """
    Return the slash-joined collection path for ``model_type``.

    Examples:
        >>> collection_path(Comment, ("u1", "p1"))
        'users/u1/posts/p1/comments'
    """
    return "/".join(_segments(model_type, parent_ids))


def resolve_collection(
    client: firestore.Client,
    model_type: type[FirestoreModel],
    parent_ids: Sequence[str] = (),
) -> Any:
    """
    Build the CollectionReference that holds documents of ``model_type``.

    Raises:
        ReferenceResolutionError: If the parent ids do not match the chain
    """
    segments = _segments(model_type, parent_ids)
    ref = client.collection(segments[0])
    for index in range(1, len(segments), 2):
        ref = ref.document(segments[index]).collection(segments[index + 1])
    return ref


def resolve_document(
    client: firestore.Client,
    model_type: type[FirestoreModel],
    document_id: Optional[str] = None,
    parent_ids: Sequence[str] = (),
) -> Any:
    """
    Build the DocumentReference for a document of ``model_type``.

    When ``document_id`` is None the SDK generates a fresh, globally unique
    document id.

    Args:
        client: The Firestore client
        model_type: The model type to resolve
        document_id: Existing document id, or None for a new one
        parent_ids: Ancestor ids, root first (sub-collection models only)

    Returns:
        DocumentReference

    Raises:
        ReferenceResolutionError: If the parent ids do not match the chain
    """
    collection = resolve_collection(client, model_type, parent_ids)
    return collection.document(document_id) if document_id else collection.document()
