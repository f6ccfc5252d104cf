"""
Test Buddy - Folder Schemas
"""
from datetime import datetime
from typing import Annotated

from pydantic import Field

from testbuddy.schemas.common import DocumentModel


class FolderCreate(DocumentModel):
    name: Annotated[str, Field(min_length=1, max_length=50)]
    description: Annotated[str, Field(max_length=200)] | None = None
    color: str | None = None


class FolderUpdate(DocumentModel):
    name: Annotated[str, Field(min_length=1, max_length=50)] | None = None
    description: Annotated[str, Field(max_length=200)] | None = None
    color: str | None = None


class Folder(DocumentModel):
    """Folder document stored at ``folders/{id}``, owned via ``userId``."""
    id: str | None = None
    user_id: str
    name: str
    description: str | None = None
    color: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
