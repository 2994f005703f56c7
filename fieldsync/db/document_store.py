import copy
import logging
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from fieldsync.models.document import LocalDocument

logger = logging.getLogger(__name__)

OUTBOX_KEY = "outbox_v1"
NOTIFICATIONS_KEY = "notifications_v1"


class DocumentStore(Protocol):
    """Whole-document key/value persistence. Values are JSON-compatible."""

    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...


class MemoryDocumentStore:
    """In-process store, used by tests and when no local database is configured."""

    def __init__(self, initial: dict[str, Any] | None = None):
        self._data: dict[str, Any] = copy.deepcopy(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)


class SqlDocumentStore:
    """
    Stores each document as a single JSON row in `local_documents`.

    Writes commit before returning, so callers never yield with an
    uncommitted queue state. Storage errors are logged and swallowed:
    a full disk must not take the device UI down with it.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def get(self, key: str, default: Any = None) -> Any:
        try:
            with self._session_factory() as session:
                row = session.get(LocalDocument, key)
                if row is None or row.value is None:
                    return default
                return row.value
        except SQLAlchemyError as e:
            logger.error("Document read failed", extra={"extra": {"key": key, "error": str(e)}})
            return default

    def set(self, key: str, value: Any) -> None:
        try:
            with self._session_factory() as session:
                row = session.get(LocalDocument, key)
                if row is None:
                    session.add(LocalDocument(key=key, value=value))
                else:
                    row.value = value
                session.commit()
        except (SQLAlchemyError, OSError, TypeError, ValueError) as e:
            logger.error("Document write failed", extra={"extra": {"key": key, "error": str(e)}})
