from __future__ import annotations

from enum import Enum
from typing import Protocol

from preload.errors import LoadError
from preload.models import AudioBuffer, LoadProgress


class FailureAction(str, Enum):
    RETRY = "retry"
    SKIP = "skip"
    ABORT = "abort"


class Playback(Protocol):
    def stop(self) -> None:
        ...


class ExperimentHost(Protocol):
    """Screen, audio output and response capture for one session."""

    screen_resolution: str

    def show_loading(self, progress: LoadProgress) -> None:
        ...

    def show_error(self, message: str) -> None:
        ...

    async def show_intro(self) -> None:
        ...

    def show_stimulus(self, stimulus_id: int) -> None:
        ...

    def start_playback(self, buffer: AudioBuffer) -> Playback:
        ...

    async def wait_for_response(self, timeout_s: float) -> bool:
        """True if the participant responded before the timeout."""
        ...

    def show_blank(self) -> None:
        ...

    def show_waiting(self, stimulus_id: int) -> None:
        ...

    def hide_waiting(self) -> None:
        ...

    def update_progress(self, percent: float) -> None:
        ...

    async def on_load_failure(self, stimulus_id: int, error: LoadError) -> FailureAction:
        ...

    async def show_end(self) -> None:
        ...
