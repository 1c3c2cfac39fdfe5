from .config import (
    SyncConfig,
    build_sync_config_from_loaded_config,
    compute_decimation_ratio,
)
from .correlator import Candidate, TriggerCorrelator, score_trigger, select_best_candidate
from .decimator import OutputDecimator
from .ingest import TriggerIngestor
from .pending import PendingTriggerQueue

__all__ = [
    "SyncConfig",
    "build_sync_config_from_loaded_config",
    "compute_decimation_ratio",
    "Candidate",
    "TriggerCorrelator",
    "score_trigger",
    "select_best_candidate",
    "OutputDecimator",
    "TriggerIngestor",
    "PendingTriggerQueue",
]
