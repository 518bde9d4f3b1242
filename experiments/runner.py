"""
Trial runner and experiment lifecycle.

The runner walks the session's sequence one trial at a time, leaning on the
preloader to guarantee each trial's audio is decoded before playback. The
Experiment wraps it with initial loading, intro, completion marker and drain.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import time
from typing import List, Optional

from experiments.config import ExperimentConfig, load_config
from experiments.errors import SessionAborted, TrialSkipped
from experiments.host import ExperimentHost, FailureAction
from experiments.session import ExperimentSession, TrialResult, now_ms
from experiments.submission import HttpTrialSink, PendingTrialQueue, StoreTrialSink, TrialSink
from preload import AudioPreloader, CachingFetcher, FileAudioFetcher, HttpAudioFetcher, HttpFetcherConfig
from preload.errors import InitialBatchFailed, LoadError
from preload.fetch import AudioFetcher
from records.store import InMemoryTrialStore

logger = logging.getLogger(__name__)


class TrialRunner:
    def __init__(
        self,
        session: ExperimentSession,
        preloader: AudioPreloader,
        host: ExperimentHost,
        sink: TrialSink,
        config: ExperimentConfig,
    ):
        self.session = session
        self.preloader = preloader
        self.host = host
        self.sink = sink
        self.config = config

    async def _await_stimulus(self, index: int) -> bool:
        sequence = self.session.sequence
        stimulus_id = sequence[index]
        while True:
            try:
                return await self.preloader.ensure_ready(sequence, index)
            except LoadError as exc:
                action = await self.host.on_load_failure(stimulus_id, exc)
                logger.warning("Stimulus %s failed to load (%s), host chose %s", stimulus_id, exc, action.value)
                if action is FailureAction.RETRY:
                    self.preloader.forget_failure(stimulus_id)
                    continue
                if action is FailureAction.SKIP:
                    raise TrialSkipped(stimulus_id) from exc
                raise SessionAborted(self.session.session_id, stimulus_id, str(exc)) from exc

    async def run_trial(self, index: int) -> Optional[TrialResult]:
        cfg = self.config
        sequence = self.session.sequence
        stimulus_id = sequence[index]
        try:
            was_paused = await self._await_stimulus(index)
        except TrialSkipped:
            logger.warning("Skipping trial %d (stimulus %s)", index + 1, stimulus_id)
            return None
        self.preloader.preload_ahead(sequence, index)
        self.host.update_progress(index / len(sequence) * 100)

        self.host.show_stimulus(stimulus_id)
        await asyncio.sleep(cfg.stimulus_delay_s)
        buffer = await self.preloader.get_buffer(stimulus_id)

        playback = self.host.start_playback(buffer)
        started = time.perf_counter()
        responded = await self.host.wait_for_response(cfg.response_timeout_s)
        reaction_ms = (time.perf_counter() - started) * 1000.0
        playback.stop()

        result = TrialResult(
            trial_number=index + 1,
            stimulus_id=stimulus_id,
            reaction_time_ms=reaction_ms,
            timestamp=now_ms(),
            was_paused=was_paused,
            timed_out=not responded,
        )
        self.session.record(result)
        await self.sink.submit_trial(self.session, result)
        return result

    async def run(self) -> List[TrialResult]:
        cfg = self.config
        sequence = self.session.sequence
        for index in range(len(sequence)):
            await self.run_trial(index)
            if index > 0 and index % cfg.evict_every == 0:
                self.preloader.evict_behind(sequence, index, cfg.keep_behind)
            self.host.show_blank()
            await asyncio.sleep(cfg.inter_trial_s)
        self.host.update_progress(100.0)
        return list(self.session.results)


class Experiment:
    """Owns one session from initial audio load to the completion marker."""

    def __init__(self, config: ExperimentConfig, preloader: AudioPreloader, host: ExperimentHost, sink: TrialSink):
        self.config = config
        self.preloader = preloader
        self.host = host
        self.sink = sink
        self.session: Optional[ExperimentSession] = None
        preloader.set_wait_callbacks(host.show_waiting, host.hide_waiting)

    async def _poll_loading(self) -> None:
        while True:
            self.host.show_loading(self.preloader.progress())
            await asyncio.sleep(self.config.loading_poll_s)

    async def _preload_initial(self, session: ExperimentSession) -> None:
        poller = asyncio.create_task(self._poll_loading())
        try:
            await self.preloader.preload_initial(session.sequence)
        finally:
            poller.cancel()
            try:
                await poller
            except asyncio.CancelledError:
                pass
        self.host.show_loading(self.preloader.progress())

    async def run(self) -> ExperimentSession:
        session = ExperimentSession.start(
            self.config.total_stimuli,
            seed=self.config.seed,
            screen_resolution=getattr(self.host, "screen_resolution", ""),
        )
        self.session = session
        logger.info("Starting session %s with %d trials", session.session_id, session.total)
        try:
            await self._preload_initial(session)
        except InitialBatchFailed as exc:
            self.host.show_error(str(exc))
            await self.preloader.drain()
            raise
        await self.host.show_intro()
        try:
            await TrialRunner(session, self.preloader, self.host, self.sink, self.config).run()
        finally:
            await self.preloader.drain()
        await self.host.show_end()
        await self.sink.mark_complete(session)
        session.finish()
        logger.info("Session %s complete: %d results", session.session_id, len(session.results))
        return session

    async def aclose(self) -> None:
        for resource in (self.preloader.fetcher, self.sink):
            close = getattr(resource, "aclose", None)
            if close is not None:
                await close()


async def run_experiment(experiment: Experiment) -> ExperimentSession:
    try:
        return await experiment.run()
    finally:
        await experiment.aclose()


def build_fetcher(cfg: ExperimentConfig) -> AudioFetcher:
    if cfg.audio_dir:
        fetcher: AudioFetcher = FileAudioFetcher(cfg.audio_dir, suffix=cfg.audio_suffix)
    else:
        fetcher = HttpAudioFetcher(HttpFetcherConfig(base_url=cfg.audio_base_url, suffix=cfg.audio_suffix))
    if cfg.audio_cache_dir:
        fetcher = CachingFetcher(fetcher, cfg.audio_cache_dir, suffix=cfg.audio_suffix)
    return fetcher


def build_sink(cfg: ExperimentConfig) -> TrialSink:
    if cfg.api_url:
        return HttpTrialSink(cfg.api_url, PendingTrialQueue(cfg.pending_dir))
    logger.warning("No api_url configured; results are kept in memory only")
    return StoreTrialSink(InMemoryTrialStore())


def build_experiment(cfg: ExperimentConfig, host: ExperimentHost) -> Experiment:
    preloader = AudioPreloader(
        build_fetcher(cfg),
        total_stimuli=cfg.total_stimuli,
        window_size=cfg.window_size,
        margin=cfg.margin,
    )
    return Experiment(cfg, preloader, host, build_sink(cfg))


def main() -> None:
    parser = argparse.ArgumentParser(description="Run an audio reaction-time session in the terminal")
    parser.add_argument("--config", help="Path to YAML experiment config")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    cfg = load_config(args.config)

    from experiments.console import ConsoleHost

    experiment = build_experiment(cfg, ConsoleHost())
    try:
        session = asyncio.run(run_experiment(experiment))
    except InitialBatchFailed as exc:
        raise SystemExit(f"{exc} (failed stimuli: {exc.failed_ids})")
    except SessionAborted as exc:
        raise SystemExit(str(exc))
    print(f"Completed session {session.session_id}: {len(session.results)} trials")


if __name__ == "__main__":
    main()
