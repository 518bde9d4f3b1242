from __future__ import annotations

from typing import Optional


class SessionAborted(Exception):
    def __init__(self, session_id: str, stimulus_id: Optional[int] = None, reason: str = ""):
        detail = f" at stimulus {stimulus_id}" if stimulus_id is not None else ""
        super().__init__(f"Session {session_id} aborted{detail}: {reason}".rstrip(": "))
        self.session_id = session_id
        self.stimulus_id = stimulus_id


class TrialSkipped(Exception):
    def __init__(self, stimulus_id: int):
        super().__init__(f"Trial for stimulus {stimulus_id} skipped")
        self.stimulus_id = stimulus_id
