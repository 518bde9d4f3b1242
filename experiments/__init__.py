"""Session lifecycle, trial runner and result submission."""

from experiments.config import ExperimentConfig, load_config
from experiments.errors import SessionAborted
from experiments.host import ExperimentHost, FailureAction
from experiments.runner import Experiment, TrialRunner, build_experiment
from experiments.session import ExperimentSession, TrialResult
from experiments.submission import HttpTrialSink, PendingTrialQueue, StoreTrialSink

__all__ = [
    "Experiment",
    "ExperimentConfig",
    "ExperimentHost",
    "ExperimentSession",
    "FailureAction",
    "HttpTrialSink",
    "PendingTrialQueue",
    "SessionAborted",
    "StoreTrialSink",
    "TrialResult",
    "TrialRunner",
    "build_experiment",
    "load_config",
]
