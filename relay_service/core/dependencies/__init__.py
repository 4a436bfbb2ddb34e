"""FastAPI dependencies shared across feature routers."""

from .database import get_db_session

__all__ = ["get_db_session"]
