from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

StepStatus = Literal["pending", "running", "completed", "error", "skipped"]


class WorkflowStep(BaseModel):
    id: str
    name: str
    description: str = ""
    status: StepStatus = "pending"
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    result: Optional[Any] = None
    error: Optional[str] = None

    @property
    def duration_ms(self) -> Optional[int]:
        if not self.started_at or not self.ended_at:
            return None
        return int((self.ended_at - self.started_at).total_seconds() * 1000)


def new_session_id(prefix: str) -> str:
    return f"{prefix}_{int(datetime.utcnow().timestamp() * 1000)}"


def utcnow() -> datetime:
    return datetime.utcnow()


class SessionBase(BaseModel):
    id: str
    tenant_id: str
    tenant_name: str = ""
    started_at: datetime = Field(default_factory=utcnow)
    ended_at: Optional[datetime] = None
    error: Optional[str] = None
