from __future__ import annotations

import platform
import random
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from schemas.api import TrialData, TrialSubmission


@dataclass(frozen=True)
class TrialResult:
    trial_number: int
    stimulus_id: int
    reaction_time_ms: float
    timestamp: int  # epoch ms
    was_paused: bool
    timed_out: bool = False

    def to_trial_data(self) -> TrialData:
        return TrialData(
            trial_number=self.trial_number,
            stimulus_id=self.stimulus_id,
            reaction_time=self.reaction_time_ms,
            timestamp=self.timestamp,
            was_paused=self.was_paused,
            timed_out=self.timed_out,
        )


def default_user_agent() -> str:
    return f"reaction-time-audio python/{platform.python_version()} ({platform.system()} {platform.machine()})"


def shuffled_sequence(total: int, rng: random.Random) -> List[int]:
    sequence = list(range(1, total + 1))
    rng.shuffle(sequence)
    return sequence


@dataclass
class ExperimentSession:
    """One participant run; created at experiment start and discarded when it completes."""

    sequence: List[int]
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    user_agent: str = field(default_factory=default_user_agent)
    screen_resolution: str = ""
    results: List[TrialResult] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    @classmethod
    def start(
        cls,
        total_stimuli: int,
        seed: Optional[int] = None,
        screen_resolution: str = "",
        user_agent: Optional[str] = None,
    ) -> "ExperimentSession":
        rng = random.Random(seed)
        session = cls(sequence=shuffled_sequence(total_stimuli, rng), screen_resolution=screen_resolution)
        if user_agent:
            session.user_agent = user_agent
        return session

    @property
    def total(self) -> int:
        return len(self.sequence)

    @property
    def is_complete(self) -> bool:
        return self.completed_at is not None

    def record(self, result: TrialResult) -> None:
        self.results.append(result)

    def finish(self) -> None:
        self.completed_at = datetime.now(timezone.utc)

    def submission_for(self, result: TrialResult) -> TrialSubmission:
        return TrialSubmission(
            session_id=self.session_id,
            user_agent=self.user_agent,
            screen_resolution=self.screen_resolution,
            trial=result.to_trial_data(),
        )


def now_ms() -> int:
    return int(time.time() * 1000)
