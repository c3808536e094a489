from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class JobStatusResponse(BaseModel):
    name: str
    last_heartbeat: Optional[datetime] = None
    runner_id: Optional[str] = None
    last_success_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None
    consecutive_failures: int
    is_disabled: bool = False
    disabled_at: Optional[datetime] = None
    last_run_status: Optional[str] = None
    last_run_at: Optional[datetime] = None


class JobStatusListResponse(BaseModel):
    items: list[JobStatusResponse]
