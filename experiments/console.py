from __future__ import annotations

import asyncio
import shutil
import sys
from typing import TextIO

import sounddevice as sd

from experiments.host import FailureAction
from preload.errors import LoadError
from preload.models import AudioBuffer, LoadProgress


class SoundDevicePlayback:
    def __init__(self, buffer: AudioBuffer):
        sd.play(buffer.samples, buffer.sample_rate)

    def stop(self) -> None:
        sd.stop()


class ConsoleHost:
    """
    Terminal host: stimuli are printed, audio goes to the default output
    device and a response is the Enter key. POSIX only (stdin reader).
    """

    def __init__(self, out: TextIO = sys.stdout, stdin: TextIO = sys.stdin, bar_width: int = 30):
        self.out = out
        self.stdin = stdin
        self.bar_width = bar_width
        size = shutil.get_terminal_size()
        self.screen_resolution = f"{size.columns}x{size.lines}"
        self.progress = 0.0

    def _write(self, text: str) -> None:
        self.out.write(text)
        self.out.flush()

    async def _read_line(self) -> str:
        loop = asyncio.get_running_loop()
        fut: asyncio.Future = loop.create_future()
        fd = self.stdin.fileno()

        def _on_ready() -> None:
            if not fut.done():
                fut.set_result(self.stdin.readline())

        loop.add_reader(fd, _on_ready)
        try:
            return await fut
        finally:
            loop.remove_reader(fd)

    def show_loading(self, progress: LoadProgress) -> None:
        filled = int(self.bar_width * min(progress.percent, 100.0) / 100)
        bar = "#" * filled + "-" * (self.bar_width - filled)
        self._write(f"\rLoading audio [{bar}] {progress.loaded} / {progress.total} files")

    def show_error(self, message: str) -> None:
        self._write(f"\n!! {message}\n")

    async def show_intro(self) -> None:
        self._write("\n\nA character appears, then a sound plays.\nPress Enter as soon as you hear it.\n\nPress Enter to begin.")
        await self._read_line()

    def show_stimulus(self, stimulus_id: int) -> None:
        self._write(f"\n\n    [ {stimulus_id:>3} ]    ({self.progress:.0f}%)\n")

    def start_playback(self, buffer: AudioBuffer) -> SoundDevicePlayback:
        return SoundDevicePlayback(buffer)

    async def wait_for_response(self, timeout_s: float) -> bool:
        try:
            await asyncio.wait_for(self._read_line(), timeout=timeout_s)
        except asyncio.TimeoutError:
            return False
        return True

    def show_blank(self) -> None:
        self._write("\n")

    def show_waiting(self, stimulus_id: int) -> None:
        self._write(f"\nLoading audio for stimulus {stimulus_id}... the experiment will continue automatically.\n")

    def hide_waiting(self) -> None:
        self._write("Resumed.\n")

    def update_progress(self, percent: float) -> None:
        self.progress = percent

    async def on_load_failure(self, stimulus_id: int, error: LoadError) -> FailureAction:
        self._write(f"\nAudio for stimulus {stimulus_id} could not be loaded ({error}).\n[r]etry, [s]kip or [q]uit? ")
        choice = (await self._read_line()).strip().lower()
        if choice.startswith("r"):
            return FailureAction.RETRY
        if choice.startswith("s"):
            return FailureAction.SKIP
        return FailureAction.ABORT

    async def show_end(self) -> None:
        self._write("\nThank you for taking part.\n")
        await asyncio.sleep(3)
