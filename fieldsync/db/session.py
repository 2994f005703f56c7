from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from fieldsync.core.config import settings
from fieldsync.db.base_class import Base


def build_engine(url: str | None = None) -> Engine:
    url = url or settings.LOCAL_DB_URL
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, pool_pre_ping=True, echo=False, connect_args=connect_args)


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    # The local store holds a handful of documents; create the table on first use
    from fieldsync.models import document  # noqa: F401  registers the model

    Base.metadata.create_all(engine)
    return sessionmaker(engine, expire_on_commit=False, class_=Session)
