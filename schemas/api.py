from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field


class TrialData(BaseModel):
    trial_number: int = Field(alias="trialNumber", ge=1)
    stimulus_id: int = Field(alias="stimulusId", ge=1)
    character: Optional[str] = None
    reaction_time: float = Field(alias="reactionTime", ge=0.0)
    timestamp: int
    was_paused: bool = Field(default=False, alias="wasPaused")
    timed_out: bool = Field(default=False, alias="timedOut")

    model_config = {"populate_by_name": True}


class TrialSubmission(BaseModel):
    session_id: str = Field(alias="sessionId", min_length=1)
    user_agent: str = Field(default="", alias="userAgent")
    screen_resolution: str = Field(default="", alias="screenResolution")
    trial: TrialData

    model_config = {"populate_by_name": True}

    def wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class TrialReceipt(BaseModel):
    success: bool = True
    trial_number: int = Field(alias="trialNumber")
    session_id: str = Field(alias="sessionId")

    model_config = {"populate_by_name": True}


class CompletionRequest(BaseModel):
    session_id: str = Field(alias="sessionId", min_length=1)
    total_trials: int = Field(alias="totalTrials", ge=0)
    completed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), alias="completedAt")

    model_config = {"populate_by_name": True}

    def wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class CompletionReceipt(BaseModel):
    success: bool = True
    session_id: str = Field(alias="sessionId")

    model_config = {"populate_by_name": True}


class SessionSummary(BaseModel):
    session_id: str
    user_agent: str
    screen_resolution: str
    total_trials: int = 0
    first_trial_at: Optional[int] = None
    last_trial_at: Optional[int] = None
    completed_at: Optional[str] = None
    created_at: str


class StoredTrial(BaseModel):
    session_id: str
    trial_number: int
    stimulus_id: int
    character: Optional[str] = None
    reaction_time: float
    timestamp: int
    was_paused: bool
    timed_out: bool = False
    saved_at: str


class SessionTrials(BaseModel):
    session_id: str
    trials: List[StoredTrial]
