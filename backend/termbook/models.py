"""SQLModel data models.

The persistent layer is a single document table: every record of every
collection (categories, terms, activity logs, daily summaries) is stored
as a JSON blob addressed by `(collection, key)`.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Document(SQLModel, table=True):
    """A single stored document.

    Fields:
    - `collection`: logical collection name (e.g. `categories`)
    - `key`: document key, unique within its collection
    - `data`: the document fields as a JSON object
    """
    __tablename__ = "documents"

    collection: str = Field(primary_key=True, index=True)
    key: str = Field(primary_key=True)
    data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
