"""
Database transaction management utilities.

Provides context managers for safe database transactions with automatic
rollback on error.

Usage:
    with transaction(db):
        # Multiple database operations
        # All succeed or all roll back
        db.add(obj1)
        db.add(obj2)
        # Automatically commits on success, rolls back on error
"""

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy.orm import Session


logger = logging.getLogger(__name__)


@contextmanager
def transaction(db: Session) -> Generator[Session, None, None]:
    """
    Context manager for database transactions with automatic rollback.

    Ensures that all database operations within the context succeed together
    or all fail together. Commits on success, rolls back and re-raises on error.

    Args:
        db: SQLAlchemy database session

    Yields:
        The same database session

    Example:
        ```python
        with transaction(db):
            contact.stage = PipelineStage.CONTACTED
            db.add(history_row)
            # Both succeed or both roll back
        ```
    """
    try:
        yield db
        db.commit()
        logger.debug("Transaction committed")
    except Exception as e:
        db.rollback()
        logger.error(f"Transaction rolled back due to error: {type(e).__name__}: {e}")
        raise
