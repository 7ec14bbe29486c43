import logging
from contextlib import contextmanager
from typing import Callable, Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from farewatch.errors import PersistenceError

logger = logging.getLogger(__name__)


class SessionStore:
    """Base for stores that run each operation in its own short-lived session.

    Sessions are never held across an ``await``; objects returned by a store
    are detached snapshots.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"{type(self).__name__}.{operation} failed: {e}")
            raise PersistenceError(f"{operation} failed: {e}") from e
        finally:
            db.close()
