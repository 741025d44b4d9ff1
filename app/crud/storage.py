from functools import wraps

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import Unavailable
from app.utils.logger import get_logger

logger = get_logger(__name__)


def storage_errors(method):
    """Roll back and surface driver failures as Unavailable. Integrity errors are handled by the methods."""
    @wraps(method)
    def wrapper(db: Session, *args, **kwargs):
        try:
            return method(db, *args, **kwargs)
        except SQLAlchemyError as e:
            logger.exception(f"Storage error in {method.__name__}: {e.__class__.__name__}")
            db.rollback()
            raise Unavailable() from e
    return wrapper
