"""
SQLAlchemy models.

WHY: Importing every model here registers it on Base.metadata, which
Alembic autogenerate and the test fixtures rely on.
"""

from formbuilder.models.base import Base
from formbuilder.models.user import User

__all__ = ["Base", "User"]
