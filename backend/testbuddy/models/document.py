"""
Test Buddy - Stored Document Model
One row per document path, used by the SQL document store
"""
from datetime import datetime

from sqlalchemy import JSON, DateTime, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from testbuddy.core.database import Base


class StoredDocument(Base):
    """
    A document addressed by its full path.

    ``collection_path`` is the parent collection (``users/u1/tests``) so
    queries over one collection never see documents of nested
    subcollections.
    """

    __tablename__ = "documents"

    path: Mapped[str] = mapped_column(String(1024), primary_key=True)
    collection_path: Mapped[str] = mapped_column(String(1024))
    doc_id: Mapped[str] = mapped_column(String(255))
    data: Mapped[dict] = mapped_column(JSON, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_documents_collection_path", "collection_path"),
    )

    def __repr__(self):
        return f"<StoredDocument {self.path}>"
