from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ActivityEvent(BaseModel):
    actor_id: UUID | None = None
    action: str = Field(min_length=1, max_length=100)
    entity_type: str | None = Field(default=None, max_length=50)
    entity_id: str | None = Field(default=None, max_length=64)
    description: str | None = None
    isp_id: UUID | None = None
    metadata: dict[str, Any] | None = None


class ActivityLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    actor_id: UUID | None = None
    action: str
    entity_type: str | None = None
    entity_id: str | None = None
    description: str | None = None
    isp_id: UUID | None = None
    metadata: dict[str, Any] | None = Field(
        default=None, validation_alias=AliasChoices("metadata_", "metadata")
    )
    created_at: datetime
