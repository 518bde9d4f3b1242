from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException

from records.store import TrialStore
from schemas.api import (
    CompletionReceipt,
    CompletionRequest,
    SessionSummary,
    SessionTrials,
    TrialReceipt,
    TrialSubmission,
)

logger = logging.getLogger(__name__)


def build_trials_router(store: TrialStore) -> APIRouter:
    router = APIRouter(prefix="/api", tags=["trials"])

    @router.post("/trial", response_model=TrialReceipt, response_model_by_alias=True)
    def save_trial(submission: TrialSubmission) -> TrialReceipt:
        trial_number = submission.trial.trial_number
        try:
            store.save_trial(submission)
        except Exception as exc:
            logger.exception("Failed to save trial %s for session %s", trial_number, submission.session_id)
            raise HTTPException(status_code=500, detail="Failed to save trial") from exc
        logger.info("Saved trial %s for session %s", trial_number, submission.session_id)
        return TrialReceipt(trial_number=trial_number, session_id=submission.session_id)

    @router.post("/complete", response_model=CompletionReceipt, response_model_by_alias=True)
    def complete(req: CompletionRequest) -> CompletionReceipt:
        try:
            store.mark_complete(req.session_id, req.total_trials, req.completed_at)
        except Exception as exc:
            logger.exception("Failed to mark session %s complete", req.session_id)
            raise HTTPException(status_code=500, detail="Failed to mark session complete") from exc
        return CompletionReceipt(session_id=req.session_id)

    @router.get("/session/{session_id}", response_model=SessionSummary)
    def get_session(session_id: str) -> SessionSummary:
        session = store.get_session(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return session

    @router.get("/session/{session_id}/trials", response_model=SessionTrials)
    def list_trials(session_id: str) -> SessionTrials:
        if store.get_session(session_id) is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return SessionTrials(session_id=session_id, trials=store.list_trials(session_id))

    return router
