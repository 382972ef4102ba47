from contextlib import contextmanager
import logging

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from microgrid.exceptions import StoreUnavailable

logger = logging.getLogger(__name__)


@contextmanager
def storage_guard(db: Session, operation: str):
    """Translate backing-store failures into StoreUnavailable, leaving the session clean."""
    try:
        yield
    except IntegrityError:
        # Constraint violations are handled by the caller that knows what they mean
        raise
    except DBAPIError as e:
        logger.error(f"Store unavailable during {operation}: {e}")
        db.rollback()
        raise StoreUnavailable(f"Backing store unavailable during {operation}") from e
