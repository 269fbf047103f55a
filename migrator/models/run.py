"""Run bookkeeping models."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
from datetime import datetime, timezone
import uuid

from .config import ProcessingMode, Region
from .record import OutcomeRecord, count_outcomes


class RunPhase(str, Enum):
    """Phase a batch belongs to."""
    BILLING = "billing"
    TEAM = "team"


@dataclass
class BatchSummary:
    """One batch of a run."""
    phase: RunPhase
    number: int
    size: int
    external_ids: List[str] = field(default_factory=list)
    succeeded: int = 0
    failed: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "phase": self.phase.value,
            "number": self.number,
            "size": self.size,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class BatchRun:
    """A complete batch run and its outcomes."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    mode: ProcessingMode = ProcessingMode.BOTH
    region: Region = Region.CA
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    outcomes: List[OutcomeRecord] = field(default_factory=list)
    batches: List[BatchSummary] = field(default_factory=list)

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def batches_for(self, phase: RunPhase) -> List[BatchSummary]:
        return [b for b in self.batches if b.phase is phase]

    def add_batch(self, phase: RunPhase, records: List[Any]) -> BatchSummary:
        """Add a new batch to the run."""
        batch = BatchSummary(
            phase=phase,
            number=len(self.batches_for(phase)) + 1,
            size=len(records),
            external_ids=[r.external_id for r in records],
            started_at=datetime.now(timezone.utc),
        )
        self.batches.append(batch)
        return batch

    def totals(self) -> Dict[str, int]:
        return count_outcomes(self.outcomes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "mode": self.mode.value,
            "region": self.region.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "totals": self.totals(),
            "outcomes": [o.to_dict() for o in self.outcomes],
            "batches": [b.to_dict() for b in self.batches],
        }
