from pydantic import BaseModel, Field
from typing import List, Optional

from .models import AttemptState


class AttemptIn(BaseModel):
    attempt_id: int = Field(gt=0)
    quiz_id: int = Field(gt=0)
    user_id: int = Field(gt=0)
    state: AttemptState = AttemptState.IN_PROGRESS
    preview: bool = False


class QuizSettingsIn(BaseModel):
    enabled: bool


class QuizSettingsOut(BaseModel):
    quiz_id: int
    enabled: bool
    saved: bool


class BulkUnlockRequest(BaseModel):
    attempt_ids: List[int] = Field(default_factory=list)


class AccessResponse(BaseModel):
    attempt_id: int
    decision: str
    reason: str
    message: Optional[str] = None
    manage_url: Optional[str] = None


class UnlockResponse(BaseModel):
    attempt_id: int
    status: str
    had_lock: bool = False
    unlocked_by: Optional[int] = None
    time_unlocked: Optional[int] = None


class BulkUnlockResponse(BaseModel):
    unlocked: int
    results: List[UnlockResponse]


class ReportRow(BaseModel):
    attempt_id: int
    user_id: int
    state: AttemptState
    locked: bool
    can_unlock: bool
    last_unlocked_by: Optional[int] = None
    last_unlocked_at: Optional[str] = None
