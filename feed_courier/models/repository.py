"""Repository helpers for keyed state documents."""

from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from .base import session_scope
from .document import StateDocument


@dataclass(slots=True)
class DocumentSnapshot:
    """Detached copy of a stored document."""

    key: str
    value: Any
    updated_at: datetime


class StateDocumentRepository:
    """Data access helpers for :class:`StateDocument`."""

    def __init__(self, session: Session):
        """Store the SQLAlchemy session used for persistence operations."""

        self._session = session

    def get(self, key: str) -> DocumentSnapshot | None:
        document = self._session.get(StateDocument, key)
        if document is None:
            return None
        return DocumentSnapshot(
            key=document.key,
            value=copy.deepcopy(document.value),
            updated_at=document.updated_at,
        )

    def put(self, key: str, value: Any) -> None:
        """Insert or replace the document stored under ``key``."""

        document = self._session.get(StateDocument, key)
        if document is None:
            document = StateDocument(key=key, value=value)
            self._session.add(document)
        else:
            # Assign a fresh object so the JSON column registers the change.
            document.value = copy.deepcopy(value)
        self._session.flush()

    def delete(self, key: str) -> bool:
        document = self._session.get(StateDocument, key)
        if document is None:
            return False
        self._session.delete(document)
        self._session.flush()
        return True

    def keys(self) -> list[str]:
        return list(self._session.scalars(select(StateDocument.key).order_by(StateDocument.key)))


def load_document(key: str, default: Any = None, *, database_url: str | None = None) -> Any:
    """Return the value stored under ``key`` or ``default`` when absent."""

    with session_scope(database_url) as session:
        snapshot = StateDocumentRepository(session).get(key)
    if snapshot is None or snapshot.value is None:
        return default
    return snapshot.value


def save_document(key: str, value: Any, *, database_url: str | None = None) -> None:
    """Persist ``value`` under ``key`` using a managed session."""

    with session_scope(database_url) as session:
        StateDocumentRepository(session).put(key, value)


def delete_document(key: str, *, database_url: str | None = None) -> bool:
    with session_scope(database_url) as session:
        return StateDocumentRepository(session).delete(key)
