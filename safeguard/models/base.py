"""
Common base for persisted entities.
"""

from datetime import datetime
from typing import ClassVar
from uuid import uuid4

from pydantic import BaseModel, Field


def new_id() -> str:
    """Collision-safe identifier for new rows."""
    return str(uuid4())


class Entity(BaseModel):
    """
    A row owned by the persistence collaborator.

    `version` is the optimistic concurrency token: repositories only apply
    an update when the stored version still matches the one that was read.
    """
    collection: ClassVar[str] = ""

    id: str = Field(default_factory=new_id)
    version: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def touched(self, **changes) -> "Entity":
        """Copy with changes applied and updated_at refreshed."""
        changes.setdefault("updated_at", datetime.utcnow())
        return self.model_copy(update=changes)
