"""
Audio preloader / playback scheduler.

Keeps a bounded cache of decoded buffers ahead of a linear trial sequence:
eager loading of the first window, fire-and-forget look-ahead while trials run,
and a blocking wait (with UI notifications) when playback is imminent but the
buffer is not ready yet. Loads for the same stimulus are deduplicated through
an in-flight task table; a load that fails once is never retried.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set, Type

from preload.decode import decode_audio
from preload.errors import DecodeFailed, FetchFailed, InitialBatchFailed, LoadError, PreviouslyFailed
from preload.fetch import AudioFetcher
from preload.models import AudioBuffer, LoadProgress

logger = logging.getLogger(__name__)

Decoder = Callable[[int, bytes], Awaitable[AudioBuffer]]
WaitCallback = Callable[[int], None]
ResumeCallback = Callable[[], None]


class AudioPreloader:
    def __init__(
        self,
        fetcher: AudioFetcher,
        decoder: Decoder = decode_audio,
        total_stimuli: int = 75,
        window_size: int = 3,
        margin: int = 3,
        on_wait: Optional[WaitCallback] = None,
        on_resume: Optional[ResumeCallback] = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        if window_size < 1:
            raise ValueError("window_size must be >= 1")
        self.fetcher = fetcher
        self.decoder = decoder
        self.total_stimuli = total_stimuli
        self.window_size = window_size
        self.margin = margin
        self.on_wait = on_wait
        self.on_resume = on_resume
        self._clock = clock
        self._buffers: Dict[int, AudioBuffer] = {}
        self._loading: Dict[int, asyncio.Task] = {}
        self._failed: Dict[int, BaseException] = {}
        self._loaded_ids: Set[int] = set()
        self._load_times_ms: List[float] = []

    def set_wait_callbacks(self, on_wait: Optional[WaitCallback], on_resume: Optional[ResumeCallback]) -> None:
        self.on_wait = on_wait
        self.on_resume = on_resume

    # -- state queries --------------------------------------------------

    def is_cached(self, stimulus_id: int) -> bool:
        return stimulus_id in self._buffers

    def is_loading(self, stimulus_id: int) -> bool:
        return stimulus_id in self._loading

    @property
    def cached_ids(self) -> List[int]:
        return list(self._buffers)

    @property
    def failed_ids(self) -> List[int]:
        return sorted(self._failed)

    def forget_failure(self, stimulus_id: int) -> bool:
        """Allow a failed stimulus to be loaded again; True if it was marked failed."""
        return self._failed.pop(stimulus_id, None) is not None

    def progress(self) -> LoadProgress:
        loaded = len(self._loaded_ids)
        mean_ms = sum(self._load_times_ms) / len(self._load_times_ms) if self._load_times_ms else 0.0
        return LoadProgress(
            loaded=loaded,
            total=self.total_stimuli,
            percent=(loaded / self.total_stimuli) * 100 if self.total_stimuli else 0.0,
            loading=len(self._loading),
            failed=len(self._failed),
            mean_load_ms=mean_ms,
        )

    # -- loading ----------------------------------------------------------

    @staticmethod
    async def _guarded(step: Awaitable, stimulus_id: int, wrap: Type[LoadError]):
        # every failure of a load step surfaces as a LoadError
        try:
            return await step
        except LoadError:
            raise
        except Exception as exc:
            raise wrap(stimulus_id, f"{type(exc).__name__}: {exc}") from exc

    async def _fetch_and_decode(self, stimulus_id: int) -> AudioBuffer:
        started = self._clock()
        try:
            data = await self._guarded(self.fetcher.fetch(stimulus_id), stimulus_id, FetchFailed)
            buffer = await self._guarded(self.decoder(stimulus_id, data), stimulus_id, DecodeFailed)
        except LoadError as exc:
            self._failed[stimulus_id] = exc
            logger.error("Failed to load stimulus %s: %s", stimulus_id, exc)
            raise
        else:
            self._buffers[stimulus_id] = buffer
            self._loaded_ids.add(stimulus_id)
            load_ms = (self._clock() - started) * 1000.0
            self._load_times_ms.append(load_ms)
            logger.info(
                "Loaded stimulus %s in %.2fs (%d/%d)",
                stimulus_id,
                load_ms / 1000.0,
                len(self._loaded_ids),
                self.total_stimuli,
            )
            return buffer
        finally:
            if self._loading.get(stimulus_id) is asyncio.current_task():
                del self._loading[stimulus_id]

    @staticmethod
    def _retrieve_result(task: asyncio.Task) -> None:
        # marks the exception as retrieved for loads nobody awaits
        if not task.cancelled():
            task.exception()

    def _start_load(self, stimulus_id: int) -> asyncio.Task:
        if stimulus_id in self._failed:
            raise PreviouslyFailed(stimulus_id, self._failed[stimulus_id])
        task = self._loading.get(stimulus_id)
        if task is None:
            task = asyncio.get_running_loop().create_task(
                self._fetch_and_decode(stimulus_id), name=f"load-audio-{stimulus_id}"
            )
            task.add_done_callback(self._retrieve_result)
            self._loading[stimulus_id] = task
        return task

    async def load_one(self, stimulus_id: int) -> AudioBuffer:
        task = self._start_load(stimulus_id)
        return await asyncio.shield(task)

    async def preload_initial(self, ids: Sequence[int]) -> List[AudioBuffer]:
        batch = list(ids)[: self.window_size]
        logger.info("Preloading initial %d files...", len(batch))
        started = self._clock()
        results = await asyncio.gather(*(self.load_one(sid) for sid in batch), return_exceptions=True)
        errors: Dict[int, BaseException] = {}
        for sid, res in zip(batch, results):
            if isinstance(res, BaseException):
                errors[sid] = res
        if errors:
            logger.error("Failed to load initial batch: %s", sorted(errors))
            raise InitialBatchFailed(errors)
        logger.info("Initial batch loaded in %.2fs", self._clock() - started)
        return list(results)

    def preload_ahead(self, sequence: Sequence[int], current_index: int) -> List[int]:
        start = current_index + self.window_size
        end = min(start + self.window_size, len(sequence))
        to_load = [
            sid
            for sid in dict.fromkeys(sequence[start:end])
            if sid not in self._buffers and sid not in self._loading and sid not in self._failed
        ]
        if not to_load:
            return []
        logger.debug("Background loading: trials %d-%d", start, end - 1)
        for sid in to_load:
            self._start_load(sid)
        return to_load

    def _notify_wait(self, stimulus_id: int) -> None:
        if self.on_wait:
            self.on_wait(stimulus_id)

    def _notify_resume(self) -> None:
        if self.on_resume:
            self.on_resume()

    async def get_buffer(self, stimulus_id: int, announce: bool = True) -> AudioBuffer:
        buffer = self._buffers.get(stimulus_id)
        if buffer is not None:
            return buffer
        if stimulus_id in self._failed:
            raise PreviouslyFailed(stimulus_id, self._failed[stimulus_id])
        if stimulus_id in self._loading:
            logger.warning("Audio %s not ready yet, pausing experiment...", stimulus_id)
        else:
            logger.warning("Emergency load for stimulus %s!", stimulus_id)
        if announce:
            self._notify_wait(stimulus_id)
        try:
            return await self.load_one(stimulus_id)
        finally:
            if announce:
                self._notify_resume()

    async def ensure_ready(self, sequence: Sequence[int], index: int) -> bool:
        """Block until sequence[index] is cached. Returns True if it had to wait."""
        if index >= len(sequence):
            return False
        stimulus_id = sequence[index]
        if stimulus_id in self._buffers:
            return False
        logger.warning("Next trial (%s) not ready, waiting...", stimulus_id)
        self._notify_wait(stimulus_id)
        try:
            await self.get_buffer(stimulus_id, announce=False)
        finally:
            self._notify_resume()
        return True

    def evict_behind(self, sequence: Sequence[int], current_index: int, keep_behind: int = 2) -> int:
        lo = max(0, current_index - keep_behind)
        hi = current_index + self.window_size + self.margin
        keep = set(sequence[lo:hi])
        stale = [sid for sid in self._buffers if sid not in keep]
        for sid in stale:
            del self._buffers[sid]
        if stale:
            logger.info("Cleared %d old buffers from memory", len(stale))
        return len(stale)

    async def drain(self) -> None:
        """Wait for every in-flight load to settle."""
        while self._loading:
            pending = list(self._loading.values())
            await asyncio.gather(*pending, return_exceptions=True)
