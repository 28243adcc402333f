"""
Core module for the CRM backend.

Contains configuration, database setup, access control and error types.
"""

from .config import settings
from .database import Base, SessionLocal, configure_database, get_db

__all__ = ["settings", "Base", "SessionLocal", "configure_database", "get_db"]
