"""Question persistence adapters.

Each category is stored as one JSON document::

    {"category": {"service_category_id": "boilers", "name": "Boilers"},
     "questions": [{...question record...}, ...]}

Questions are never physically removed; deleting one sets ``is_deleted``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

import requests

from intake_flow.errors import PersistenceError
from intake_flow.flow_defaults import DEFAULT_CATEGORY_LABEL
from intake_flow.github_backend import GitHubBackend, resolve_category_path
from intake_flow.models import Question, question_fields

logger = logging.getLogger(__name__)

QUESTIONS_FILENAME = "form_questions.json"
DEFAULT_STORE_ROOT = Path("form_questions")


@dataclass(frozen=True)
class Category:
    category_id: str
    name: str


@contextmanager
def _persistence_errors(action: str) -> Iterator[None]:
    """Re-raise storage and transport failures as :class:`PersistenceError`."""

    try:
        yield
    except PersistenceError:
        raise
    except (OSError, ValueError, KeyError, requests.RequestException) as exc:
        logger.error("Question store failed to %s: %s", action, exc)
        raise PersistenceError(f"Could not {action}: {exc}") from exc


def _empty_document(category_id: str) -> Dict[str, Any]:
    return {"category": {"service_category_id": category_id, "name": category_id}, "questions": []}


def _category_from_document(category_id: str, document: Mapping[str, Any]) -> Category:
    meta = document.get("category")
    name = meta.get("name") if isinstance(meta, Mapping) else None
    return Category(category_id=category_id, name=str(name or category_id or DEFAULT_CATEGORY_LABEL))


def _records(document: Mapping[str, Any]) -> List[Dict[str, Any]]:
    questions = document.get("questions")
    if not isinstance(questions, list):
        raise ValueError("Question document has no 'questions' list")
    return questions


class QuestionStore(ABC):
    """Async interface the editor uses to load and persist questions."""

    @abstractmethod
    async def list_categories(self) -> List[Category]:
        """Return the known categories."""

    @abstractmethod
    async def list_questions(self, category_id: str, *, include_inactive: bool = False) -> List[Question]:
        """Return non-deleted questions of ``category_id`` (order not guaranteed)."""

    @abstractmethod
    async def create_question(self, question: Question) -> Question:
        """Persist a new question and return it as stored."""

    @abstractmethod
    async def update_question(self, question_id: str, fields: Mapping[str, Any]) -> Question:
        """Apply ``fields`` to an existing question and return it as stored."""

    @abstractmethod
    async def soft_delete_question(self, question_id: str) -> None:
        """Flag a question as deleted."""


class DocumentQuestionStore(QuestionStore):
    """Store built on one JSON document per category.

    Subclasses provide document transport only.
    """

    @abstractmethod
    async def _category_ids(self) -> List[str]:
        ...

    @abstractmethod
    async def _load(self, category_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def _save(self, category_id: str, document: Dict[str, Any], message: str) -> None:
        ...

    async def _find(self, question_id: str) -> Tuple[str, Dict[str, Any], Dict[str, Any]]:
        """Return ``(category_id, document, record)`` holding ``question_id``."""

        for category_id in await self._category_ids():
            document = await self._load(category_id)
            if document is None:
                continue
            for record in _records(document):
                if str(record.get("question_id")) == question_id:
                    return category_id, document, record
        raise PersistenceError(f"Question {question_id} not found")

    async def list_categories(self) -> List[Category]:
        categories = []
        with _persistence_errors("list categories"):
            for category_id in await self._category_ids():
                document = await self._load(category_id) or _empty_document(category_id)
                categories.append(_category_from_document(category_id, document))
        return categories

    async def list_questions(self, category_id: str, *, include_inactive: bool = False) -> List[Question]:
        with _persistence_errors(f"load questions for {category_id}"):
            document = await self._load(category_id)
            if document is None:
                return []
            questions = [Question.from_record(record) for record in _records(document)]
        return [
            question
            for question in questions
            if not question.is_deleted and (include_inactive or question.is_active)
        ]

    async def create_question(self, question: Question) -> Question:
        category_id = question.service_category_id
        if not category_id:
            raise PersistenceError("Question has no service_category_id")

        record = question.to_record()
        record["question_id"] = question.question_id or uuid.uuid4().hex
        record["is_deleted"] = False
        with _persistence_errors("create question"):
            document = await self._load(category_id) or _empty_document(category_id)
            records = _records(document)
            if any(str(item.get("question_id")) == record["question_id"] for item in records):
                raise PersistenceError(f"Question {record['question_id']} already exists")
            records.append(record)
            await self._save(category_id, document, f"Add question {record['question_id']}")
        logger.info("Created question %s in %s", record["question_id"], category_id)
        return Question.from_record(record)

    async def update_question(self, question_id: str, fields: Mapping[str, Any]) -> Question:
        allowed = set(question_fields()) - {"service_category_id"}
        unknown = sorted(set(fields) - allowed)
        if unknown:
            raise PersistenceError(f"Cannot update fields: {', '.join(unknown)}")

        with _persistence_errors(f"update question {question_id}"):
            category_id, document, record = await self._find(question_id)
            record.update(deepcopy(dict(fields)))
            await self._save(category_id, document, f"Update question {question_id}")
        logger.info("Updated question %s (%s)", question_id, ", ".join(sorted(fields)))
        return Question.from_record(record)

    async def soft_delete_question(self, question_id: str) -> None:
        with _persistence_errors(f"delete question {question_id}"):
            category_id, document, record = await self._find(question_id)
            record["is_deleted"] = True
            await self._save(category_id, document, f"Delete question {question_id}")
        logger.info("Soft-deleted question %s", question_id)


class InMemoryQuestionStore(DocumentQuestionStore):
    """Keeps category documents in a dict; useful for previews and tests."""

    def __init__(self, documents: Optional[Mapping[str, Dict[str, Any]]] = None) -> None:
        self.documents: Dict[str, Dict[str, Any]] = deepcopy(dict(documents or {}))

    @classmethod
    def from_questions(cls, category_id: str, questions: List[Question], name: str = "") -> "InMemoryQuestionStore":
        document = _empty_document(category_id)
        document["category"]["name"] = name or category_id
        document["questions"] = [question.to_record() for question in questions]
        return cls({category_id: document})

    async def _category_ids(self) -> List[str]:
        return sorted(self.documents)

    async def _load(self, category_id: str) -> Optional[Dict[str, Any]]:
        document = self.documents.get(category_id)
        return deepcopy(document) if document is not None else None

    async def _save(self, category_id: str, document: Dict[str, Any], message: str) -> None:
        self.documents[category_id] = deepcopy(document)


class LocalQuestionStore(DocumentQuestionStore):
    """Stores ``<root>/<category_id>/form_questions.json`` files on disk."""

    def __init__(self, root: Path = DEFAULT_STORE_ROOT) -> None:
        self.root = Path(root)

    def _path(self, category_id: str) -> Path:
        return self.root / category_id / QUESTIONS_FILENAME

    async def _category_ids(self) -> List[str]:
        if not self.root.exists():
            return []
        return sorted(
            entry.name
            for entry in self.root.iterdir()
            if entry.is_dir() and (entry / QUESTIONS_FILENAME).exists()
        )

    async def _load(self, category_id: str) -> Optional[Dict[str, Any]]:
        path = self._path(category_id)
        if not path.exists():
            return None
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)

    async def _save(self, category_id: str, document: Dict[str, Any], message: str) -> None:
        path = self._path(category_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as handle:
            json.dump(document, handle, indent=2)
            handle.write("\n")


class GitHubQuestionStore(DocumentQuestionStore):
    """Stores category documents in a GitHub repository."""

    def __init__(self, backend: GitHubBackend, path_template: str = "form_questions") -> None:
        self.backend = backend
        self.path_template = path_template

    def _path(self, category_id: str) -> str:
        return resolve_category_path(self.path_template, category_id, QUESTIONS_FILENAME)

    async def _category_ids(self) -> List[str]:
        if "{category_id}" in self.path_template or self.path_template.endswith(".json"):
            root = self.path_template.split("{category_id}")[0].rstrip("/")
        else:
            root = self.path_template.rstrip("/")
        return await asyncio.to_thread(self.backend.list_directories, root)

    async def _load(self, category_id: str) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(self.backend.read_json, self._path(category_id))

    async def _save(self, category_id: str, document: Dict[str, Any], message: str) -> None:
        await asyncio.to_thread(self.backend.write_json, self._path(category_id), document, message)


__all__ = [
    "Category",
    "DocumentQuestionStore",
    "GitHubQuestionStore",
    "InMemoryQuestionStore",
    "LocalQuestionStore",
    "QUESTIONS_FILENAME",
    "QuestionStore",
]
