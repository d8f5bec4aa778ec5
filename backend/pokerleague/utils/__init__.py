"""Utility modules."""

from pokerleague.utils.db import close_db, get_engine, get_session_factory, init_db
from pokerleague.utils.errors import ErrorCode, SessionError

__all__ = [
    "close_db",
    "get_engine",
    "get_session_factory",
    "init_db",
    "ErrorCode",
    "SessionError",
]
