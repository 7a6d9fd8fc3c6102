"""Database table definitions.

Importing this package registers every table on Base.metadata.
"""

from certflow.db.models.base import NAMING_CONVENTION, Base, metadata
from certflow.db.models.documents import EntityDocument

__all__ = [
    "NAMING_CONVENTION",
    "Base",
    "EntityDocument",
    "metadata",
]
