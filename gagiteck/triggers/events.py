"""Trigger event contract."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..definitions import TriggerType
from ..models import utcnow


class TriggerEvent(BaseModel):
    """Request to start a workflow run, addressed by id or by event name."""

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    workflow_id: Optional[str] = None
    event: Optional[str] = None
    trigger: TriggerType = TriggerType.EVENT
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "TriggerEvent":
        return cls.model_validate_json(data)
