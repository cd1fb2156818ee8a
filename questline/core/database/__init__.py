"""
Questline database infrastructure.
"""

from questline.core.database.service import (
    DatabaseInitializationError,
    DatabaseNotInitializedError,
    DatabaseService,
)

__all__ = [
    "DatabaseService",
    "DatabaseInitializationError",
    "DatabaseNotInitializedError",
]
