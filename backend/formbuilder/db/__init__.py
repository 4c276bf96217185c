"""Database package"""

from formbuilder.db.session import AsyncSessionLocal, engine, get_db
from formbuilder.models.base import Base

__all__ = ["Base", "AsyncSessionLocal", "engine", "get_db"]
