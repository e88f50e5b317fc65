from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SessionCreate(BaseModel):
    device_info: dict[str, Any] | None = Field(
        default=None,
        description="Free-form client/device description",
    )


class SessionSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    start_time: datetime
    end_time: datetime | None = None


class SessionResponse(SessionSummary):
    user_id: str
    device_info: dict[str, Any] | None = None
    is_active: bool
