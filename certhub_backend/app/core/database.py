import logging
from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import Settings, get_settings
from app.core.errors import Conflict, Unavailable

logger = logging.getLogger(__name__)


def build_engine(settings: Settings) -> Engine:
    timeout = settings.db_timeout_seconds
    if settings.database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": timeout}
        return create_engine(settings.database_url, connect_args=connect_args)
    return create_engine(
        settings.database_url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        pool_timeout=timeout,
        connect_args={"connect_timeout": max(1, int(timeout))},
    )


@lru_cache()
def get_engine() -> Engine:
    return build_engine(get_settings())


@lru_cache()
def get_sessionmaker() -> sessionmaker:
    return sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)


def get_db() -> Iterator[Session]:
    db = get_sessionmaker()()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def datastore_errors(db: Session) -> Iterator[None]:
    """Map driver outages raised inside the block onto ``Unavailable``."""
    try:
        yield
    except OperationalError as exc:
        db.rollback()
        logger.error("Datastore unavailable: %s", exc)
        raise Unavailable(f"Datastore unavailable: {exc.orig}") from exc


def commit_or_raise(db: Session, conflict_detail: str = "Record already exists.") -> None:
    """Commit the primary write, mapping driver failures onto domain errors."""
    with datastore_errors(db):
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            logger.info("Integrity violation: %s", exc.orig)
            raise Conflict(conflict_detail) from exc
