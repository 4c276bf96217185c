"""
Data Access Object (DAO) package.

WHY: DAOs provide a clean separation between database operations and business logic,
making the codebase more testable and maintainable.
"""

from formbuilder.dao.base import BaseDAO
from formbuilder.dao.user import UserDAO

__all__ = ["BaseDAO", "UserDAO"]
