from typing import Any

from sqlalchemy import String, JSON
from sqlalchemy.orm import Mapped, mapped_column
from fieldsync.db.base_class import Base, TimestampMixin


class LocalDocument(Base, TimestampMixin):
    __tablename__ = "local_documents"

    key: Mapped[str] = mapped_column(String(200), primary_key=True, comment="Document key, e.g. outbox_v1")
    value: Mapped[Any] = mapped_column(JSON, nullable=True, comment="Whole serialized document")
