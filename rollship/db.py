from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from typing import TypeVar

from sqlalchemy import create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker

from rollship.config import settings

logger = logging.getLogger(__name__)

T = TypeVar('T')

engine = create_engine(settings.database_url_normalized, echo=settings.db_echo, pool_pre_ping=True, future=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_db() -> Iterator[Session]:
    with SessionLocal() as db:
        try:
            yield db
        except Exception:
            db.rollback()
            raise


def insert_for(db: Session, table):
    """Dialect insert construct so callers can use ON CONFLICT DO NOTHING."""
    if db.get_bind().dialect.name == 'sqlite':
        return sqlite.insert(table)
    return postgresql.insert(table)


def _is_transient(exc: DBAPIError) -> bool:
    return bool(getattr(exc, 'connection_invalidated', False))


def run_in_transaction(
    work: Callable[[Session], T],
    *,
    session_factory: Callable[[], Session] = SessionLocal,
    attempts: int | None = None,
) -> T:
    # Only the whole unit of work is retried, never a partial sequence.
    max_attempts = max(1, attempts if attempts is not None else settings.db_retry_attempts)
    for attempt in range(1, max_attempts + 1):
        with session_factory() as db:
            try:
                result = work(db)
                db.commit()
                return result
            except DBAPIError as exc:
                db.rollback()
                if not _is_transient(exc) or attempt == max_attempts:
                    raise
                logger.warning('Transient database failure, retrying unit of work', extra={'attempt': attempt})
            except Exception:
                db.rollback()
                raise
    raise RuntimeError('unreachable')


def get_session_factory() -> Callable[[], Session]:
    return SessionLocal
