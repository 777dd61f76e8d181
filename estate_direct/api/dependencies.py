import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..auth.jwt import get_db
from ..core.errors import InvalidTransition

logger = logging.getLogger(__name__)

__all__ = ["get_db", "unit_of_work"]


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """Commit everything the block flushed, or nothing at all."""
    try:
        yield db
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        logger.warning("Concurrent update detected: %s", exc)
        raise InvalidTransition("The record changed while this request was running; reload and retry.") from exc
    except Exception:
        db.rollback()
        raise
