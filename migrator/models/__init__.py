"""Data models for the migrator."""

from .record import (
    InputRecord,
    OutcomeRecord,
    RecordStatus,
    StatusPresentation,
    STATUS_PRESENTATION,
    count_outcomes,
)
from .config import (
    BatchTimings,
    ProcessingConfig,
    ProcessingMode,
    Region,
    Settings,
    TeamOptions,
    TeamPlan,
)
from .run import (
    BatchRun,
    BatchSummary,
    RunPhase,
)

__all__ = [
    "InputRecord",
    "OutcomeRecord",
    "RecordStatus",
    "StatusPresentation",
    "STATUS_PRESENTATION",
    "count_outcomes",
    "BatchTimings",
    "ProcessingConfig",
    "ProcessingMode",
    "Region",
    "Settings",
    "TeamOptions",
    "TeamPlan",
    "BatchRun",
    "BatchSummary",
    "RunPhase",
]
