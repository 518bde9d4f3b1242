from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import httpx

from experiments.session import ExperimentSession, TrialResult
from records.store import TrialStore
from schemas.api import CompletionRequest, TrialSubmission

logger = logging.getLogger(__name__)


class TrialSink(Protocol):
    async def submit_trial(self, session: ExperimentSession, result: TrialResult) -> bool:
        ...

    async def mark_complete(self, session: ExperimentSession) -> bool:
        ...


class PendingTrialQueue:
    """Trials that could not be delivered, one JSON file per trial."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    @staticmethod
    def key(session_id: str, trial_number: int) -> str:
        return f"experiment_{session_id}_trial_{trial_number}"

    def _path(self, session_id: str, trial_number: int) -> Path:
        return self.root / f"{self.key(session_id, trial_number)}.json"

    def save(self, submission: TrialSubmission) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self._path(submission.session_id, submission.trial.trial_number)
        record = submission.wire()
        record["savedAt"] = int(time.time() * 1000)
        record["needsSync"] = True
        path.write_text(json.dumps(record))
        return path

    def load_all(self, session_id: Optional[str] = None) -> List[TrialSubmission]:
        if not self.root.exists():
            return []
        prefix = f"experiment_{session_id}_trial_" if session_id else "experiment_"
        pending: List[TrialSubmission] = []
        for path in sorted(self.root.glob(f"{prefix}*.json")):
            try:
                raw: Dict[str, Any] = json.loads(path.read_text())
                pending.append(TrialSubmission.model_validate(raw))
            except (json.JSONDecodeError, ValueError) as exc:
                logger.warning("Skipping unreadable pending trial %s: %s", path.name, exc)
        return sorted(pending, key=lambda s: (s.session_id, s.trial.trial_number))

    def remove(self, session_id: str, trial_number: int) -> None:
        self._path(session_id, trial_number).unlink(missing_ok=True)

    def count(self, session_id: Optional[str] = None) -> int:
        return len(self.load_all(session_id))


class HttpTrialSink:
    """
    Posts trials to `{api_url}/api/trial` and the completion marker to
    `{api_url}/api/complete`. Trials that fail to post are queued locally and
    re-sent before the completion marker; neither call ever raises.
    """

    def __init__(self, api_url: str, queue: PendingTrialQueue, client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        self.api_url = api_url.rstrip("/")
        self.queue = queue
        self._client = client
        self._owns_client = client is None
        self.timeout = timeout

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def _post(self, path: str, payload: Dict[str, Any]) -> None:
        response = await self._ensure_client().post(f"{self.api_url}{path}", json=payload)
        response.raise_for_status()

    async def send(self, submission: TrialSubmission) -> bool:
        try:
            await self._post("/api/trial", submission.wire())
        except httpx.HTTPError as exc:
            logger.error("Failed to save trial %s: %s", submission.trial.trial_number, exc)
            return False
        return True

    async def submit_trial(self, session: ExperimentSession, result: TrialResult) -> bool:
        submission = session.submission_for(result)
        if await self.send(submission):
            logger.info("Trial %s saved to server", result.trial_number)
            return True
        try:
            self.queue.save(submission)
            logger.info("Trial %s queued for later sync", result.trial_number)
        except OSError as exc:
            logger.error("Failed to queue trial %s locally: %s", result.trial_number, exc)
        return False

    async def flush_pending(self, session_id: Optional[str] = None) -> int:
        sent = 0
        for submission in self.queue.load_all(session_id):
            if await self.send(submission):
                self.queue.remove(submission.session_id, submission.trial.trial_number)
                sent += 1
        return sent

    async def mark_complete(self, session: ExperimentSession) -> bool:
        flushed = await self.flush_pending(session.session_id)
        if flushed:
            logger.info("Re-sent %d queued trials for session %s", flushed, session.session_id)
        request = CompletionRequest(
            session_id=session.session_id,
            total_trials=len(session.results),
        )
        try:
            await self._post("/api/complete", request.wire())
        except httpx.HTTPError as exc:
            logger.error("Failed to mark experiment complete: %s", exc)
            return False
        logger.info("Experiment marked as complete")
        return True

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class StoreTrialSink:
    """Writes straight into a trial store, for local runs without a server."""

    def __init__(self, store: TrialStore):
        self.store = store

    async def submit_trial(self, session: ExperimentSession, result: TrialResult) -> bool:
        self.store.save_trial(session.submission_for(result))
        return True

    async def mark_complete(self, session: ExperimentSession) -> bool:
        self.store.mark_complete(session.session_id, len(session.results))
        return True
