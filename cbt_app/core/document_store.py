"""In-memory document store backing every CBT entity."""

from __future__ import annotations

import copy
from threading import RLock
from typing import Any, Callable, Iterable
from uuid import uuid4

from cbt_app.core.errors import NotFoundError
from cbt_app.core.models import StudentAnswer

QUESTIONS = "questions"
TESTS = "tests"
SESSIONS = "sessions"
ANSWERS = "answers"
RESULTS = "results"
SECURITY_EVENTS = "security_events"

_KINDS = {
    QUESTIONS: "Question",
    TESTS: "Test",
    SESSIONS: "Test session",
    ANSWERS: "Answer",
    RESULTS: "Test result",
    SECURITY_EVENTS: "Security event",
}


class DocumentStore:
    """Keyed document collections with filter/sort/paginate reads.

    Documents are dataclass instances with an ``id`` attribute. Reads hand
    out copies, so callers must ``save`` after mutating a document.
    """

    def __init__(self, id_factory: Callable[[], str] | None = None) -> None:
        self._lock = RLock()
        self._collections: dict[str, dict[str, Any]] = {name: {} for name in _KINDS}
        self._id_factory = id_factory or (lambda: uuid4().hex)

    def insert(self, collection: str, document: Any) -> Any:
        """Store a new document, assigning an id when it has none."""
        with self._lock:
            documents = self._collection(collection)
            if not document.id:
                document.id = self._id_factory()
            if document.id in documents:
                raise ValueError(f"Document '{document.id}' already exists in {collection}.")
            documents[document.id] = copy.deepcopy(document)
            return copy.deepcopy(document)

    def save(self, collection: str, document: Any) -> Any:
        """Replace an existing document."""
        with self._lock:
            documents = self._collection(collection)
            if document.id not in documents:
                raise NotFoundError(_KINDS[collection], document.id)
            documents[document.id] = copy.deepcopy(document)
            return copy.deepcopy(document)

    def get(self, collection: str, document_id: str) -> Any | None:
        with self._lock:
            document = self._collection(collection).get(document_id)
            return copy.deepcopy(document) if document is not None else None

    def require(self, collection: str, document_id: str, kind: str) -> Any:
        """Return the document or raise ``NotFoundError`` naming ``kind``."""
        document = self.get(collection, document_id)
        if document is None:
            raise NotFoundError(kind, document_id)
        return document

    def get_many(self, collection: str, document_ids: Iterable[str]) -> list[Any]:
        """Return the documents that exist, in the order requested."""
        with self._lock:
            documents = self._collection(collection)
            return [
                copy.deepcopy(documents[document_id])
                for document_id in document_ids
                if document_id in documents
            ]

    def delete(self, collection: str, document_id: str) -> bool:
        with self._lock:
            return self._collection(collection).pop(document_id, None) is not None

    def find(
        self,
        collection: str,
        predicate: Callable[[Any], bool] | None = None,
        sort_key: Callable[[Any], Any] | None = None,
        reverse: bool = False,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[Any]:
        """Return matching documents in insertion order unless ``sort_key`` is given."""
        with self._lock:
            matches = [
                document
                for document in self._collection(collection).values()
                if predicate is None or predicate(document)
            ]
            if sort_key is not None:
                matches.sort(key=sort_key, reverse=reverse)
            end = None if limit is None else skip + limit
            return [copy.deepcopy(document) for document in matches[skip:end]]

    def count(self, collection: str, predicate: Callable[[Any], bool] | None = None) -> int:
        with self._lock:
            return sum(
                1
                for document in self._collection(collection).values()
                if predicate is None or predicate(document)
            )

    def upsert_answer(self, answer: StudentAnswer) -> StudentAnswer:
        """Store ``answer`` and link it to its session in one step.

        An existing answer for the same question in the same session is
        replaced in place, keeping its id.
        """
        with self._lock:
            sessions = self._collection(SESSIONS)
            answers = self._collection(ANSWERS)
            session = sessions.get(answer.session_id)
            if session is None:
                raise NotFoundError(_KINDS[SESSIONS], answer.session_id)

            existing = next(
                (
                    answers[answer_id]
                    for answer_id in session.answers
                    if answer_id in answers
                    and answers[answer_id].question_id == answer.question_id
                ),
                None,
            )
            if existing is not None:
                answer.id = existing.id
            elif not answer.id:
                answer.id = self._id_factory()

            answers[answer.id] = copy.deepcopy(answer)
            if answer.id not in session.answers:
                session.answers.append(answer.id)
            return copy.deepcopy(answer)

    def _collection(self, name: str) -> dict[str, Any]:
        try:
            return self._collections[name]
        except KeyError as exc:
            raise ValueError(f"Unknown collection '{name}'.") from exc
