from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


@dataclass
class ExperimentConfig:
    id: str = "reaction_time_audio"
    total_stimuli: int = 75
    window_size: int = 3
    margin: int = 3
    keep_behind: int = 2
    evict_every: int = 10
    stimulus_delay_s: float = 1.0
    response_timeout_s: float = 16.0
    inter_trial_s: float = 0.5
    loading_poll_s: float = 0.1
    audio_base_url: Optional[str] = None
    audio_dir: Optional[str] = None
    audio_suffix: str = "wav"
    audio_cache_dir: Optional[str] = None
    api_url: Optional[str] = None
    pending_dir: str = "results/pending"
    seed: Optional[int] = None

    def validate(self) -> "ExperimentConfig":
        if self.total_stimuli < 1:
            raise ValueError("total_stimuli must be >= 1")
        if self.window_size < 1:
            raise ValueError("window_size must be >= 1")
        if self.margin < 0 or self.keep_behind < 0:
            raise ValueError("margin and keep_behind must be >= 0")
        if self.evict_every < 1:
            raise ValueError("evict_every must be >= 1")
        for name in ("stimulus_delay_s", "response_timeout_s", "inter_trial_s", "loading_poll_s"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")
        if not self.audio_base_url and not self.audio_dir:
            raise ValueError("either audio_base_url or audio_dir must be configured")
        return self


ENV_OVERRIDES = {
    "EXPERIMENT_AUDIO_URL": "audio_base_url",
    "EXPERIMENT_AUDIO_DIR": "audio_dir",
    "EXPERIMENT_API_URL": "api_url",
    "EXPERIMENT_PENDING_DIR": "pending_dir",
    "EXPERIMENT_SEED": "seed",
}


def _from_mapping(raw: Dict[str, Any]) -> ExperimentConfig:
    known = {f.name for f in fields(ExperimentConfig)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValueError(f"Unknown experiment config keys: {', '.join(unknown)}")
    return ExperimentConfig(**raw)


def load_config(path: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> ExperimentConfig:
    """Read a YAML config (optional) and apply EXPERIMENT_* environment overrides."""
    raw: Dict[str, Any] = {}
    if path:
        with Path(path).open("r") as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Experiment config {path} must be a mapping")
    env = os.environ if environ is None else environ
    for var, key in ENV_OVERRIDES.items():
        value = env.get(var)
        if value:
            raw[key] = int(value) if key == "seed" else value
    return _from_mapping(raw).validate()
