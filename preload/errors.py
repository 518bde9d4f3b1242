from __future__ import annotations

from typing import Dict, List, Optional


class LoadError(Exception):
    """Base class for audio load failures, tagged with the stimulus id."""

    def __init__(self, stimulus_id: int, message: str):
        super().__init__(message)
        self.stimulus_id = stimulus_id


class FetchFailed(LoadError):
    def __init__(self, stimulus_id: int, reason: str, status_code: Optional[int] = None):
        super().__init__(stimulus_id, f"Fetch failed for stimulus {stimulus_id}: {reason}")
        self.status_code = status_code


class DecodeFailed(LoadError):
    def __init__(self, stimulus_id: int, reason: str):
        super().__init__(stimulus_id, f"Decode failed for stimulus {stimulus_id}: {reason}")


class PreviouslyFailed(LoadError):
    def __init__(self, stimulus_id: int, original: Optional[BaseException] = None):
        super().__init__(stimulus_id, f"Stimulus {stimulus_id} previously failed to load")
        self.original = original


class InitialBatchFailed(Exception):
    """At least one load of the first window failed; the experiment cannot start."""

    def __init__(self, errors: Dict[int, BaseException]):
        super().__init__("Could not load initial audio files. Please check your connection.")
        self.errors = errors

    @property
    def failed_ids(self) -> List[int]:
        return sorted(self.errors)
