"""Test Buddy - Models initialization."""
from testbuddy.models.document import StoredDocument

__all__ = [
    "StoredDocument",
]
