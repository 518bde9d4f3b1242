from __future__ import annotations

import logging
import os
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from api.trials_api import build_trials_router
from records.store import InMemoryTrialStore, SqliteTrialStore, TrialStore

logger = logging.getLogger(__name__)


def build_trial_store() -> TrialStore:
    db_path = os.getenv("TRIAL_STORE_DB")
    if db_path:
        try:
            return SqliteTrialStore(db_path)
        except Exception as exc:
            logger.warning("Falling back to in-memory trial store: %s", exc)
    return InMemoryTrialStore()


def create_app(store: TrialStore) -> FastAPI:
    app = FastAPI(title="Reaction-time audio experiment API", version="0.1.0")

    allowed_origins = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "").split(",") if o.strip()]
    if allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allowed_origins,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type"],
        )
    app.include_router(build_trials_router(store))

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    audio_dir = os.getenv("AUDIO_DIR")
    if audio_dir and Path(audio_dir).is_dir():
        app.mount("/audio", StaticFiles(directory=audio_dir), name="audio")

    return app


store = build_trial_store()
app = create_app(store)
