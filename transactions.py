"""
One-transaction-per-call wrapper for engine entry points.
"""

import functools
import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from errors import Conflict, EngineError, Internal
from models import db

logger = logging.getLogger(__name__)


def transactional(func):
    """
    Run ``func`` in a single database transaction.

    Commits when ``func`` returns and rolls the whole session back on any
    failure. Engine errors pass through unchanged; storage errors are mapped
    to ``Conflict`` (integrity, stale rows) or ``Internal``.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            result = func(*args, **kwargs)
            db.session.commit()
            return result
        except EngineError as e:
            db.session.rollback()
            if e.status_code >= 500:
                logger.error(f"{func.__name__} failed: {e.message}")
            else:
                logger.warning(f"{func.__name__} rejected: {e.message}")
            raise
        except (IntegrityError, StaleDataError) as e:
            db.session.rollback()
            logger.warning(f"{func.__name__} conflicted with stored state: {str(e)}")
            raise Conflict(f"Conflicting concurrent or duplicate write: {e.__class__.__name__}") from e
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Database error in {func.__name__}: {str(e)}")
            raise Internal(f"Storage failure: {e.__class__.__name__}") from e
        except Exception:
            db.session.rollback()
            logger.exception(f"Unexpected error in {func.__name__}")
            raise

    return wrapper
