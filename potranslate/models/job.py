"""
Job and run data model: per-language results, usage, validation stats and
the aggregated run summary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .catalog import TranslationResult


class JobStatus(str, Enum):
    """Terminal status of one language job."""
    SUCCEEDED = "succeeded"
    PARTIALLY_FAILED = "partially_failed"
    FAILED = "failed"
    SKIPPED = "skipped"


class JobOutcome(str, Enum):
    """What the orchestrator should do after a job finishes."""
    COMPLETED = "completed"
    SKIP_LANGUAGE = "skip_language"
    ABORT_RUN = "abort_run"


class StopReason(str, Enum):
    """Why a job stopped dispatching batches."""
    COMPLETED = "completed"
    BUDGET_EXCEEDED = "budget_exceeded"
    MAX_RETRIES = "max_retries"
    RUN_ABORTED = "run_aborted"


class BatchState(str, Enum):
    """Per-batch state machine."""
    PENDING = "pending"
    DISPATCHED = "dispatched"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED_FINAL = "failed_final"


class RunStatus(Enum):
    """Aggregated run status; value is the process exit code."""
    SUCCESS = ("success", 0)
    BUDGET_EXCEEDED = ("budget_exceeded", 3)
    PARTIAL_SUCCESS = ("partial_success", 2)
    FAILURE = ("failure", 1)

    @property
    def label(self) -> str:
        return self.value[0]

    @property
    def exit_code(self) -> int:
        return self.value[1]


# Registry of validation types with their display names.
VALIDATION_TYPES: Dict[str, str] = {
    "strings_with_plural_issues": "strings with plural issues",
    "missing_translations": "strings missing from the reply",
    "unmatched_response_indices": "reply blocks with unknown indices",
}


@dataclass
class ValidationStats:
    """Recoverable data-quality issues. Never fatal, always reported."""

    counts: Dict[str, int] = field(
        default_factory=lambda: {key: 0 for key in VALIDATION_TYPES}
    )

    def record(self, key: str, amount: int = 1) -> None:
        if key not in VALIDATION_TYPES:
            raise KeyError(f"Unknown validation type: {key}")
        self.counts[key] = self.counts.get(key, 0) + amount

    def get(self, key: str) -> int:
        return self.counts.get(key, 0)

    def accumulate(self, other: Optional[ValidationStats]) -> None:
        """Add counts from ``other`` into this instance."""
        if other is None:
            return
        for key in VALIDATION_TYPES:
            self.counts[key] = self.counts.get(key, 0) + other.counts.get(key, 0)

    @property
    def total(self) -> int:
        return sum(self.counts.get(key, 0) for key in VALIDATION_TYPES)

    def breakdown(self) -> str:
        """Human-readable summary, e.g. "2 strings with plural issues"."""
        parts = [
            f"{self.counts[key]} {label}"
            for key, label in VALIDATION_TYPES.items()
            if self.counts.get(key, 0) > 0
        ]
        return ", ".join(parts) if parts else "no issues"

    def to_dict(self) -> Dict[str, int]:
        return {key: self.counts.get(key, 0) for key in VALIDATION_TYPES}


@dataclass
class Usage:
    """Token usage and modeled cost."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost: float = 0.0

    def add(self, prompt_tokens: int = 0, completion_tokens: int = 0, cost: float = 0.0) -> None:
        self.prompt_tokens += prompt_tokens
        self.completion_tokens += completion_tokens
        self.cost += cost

    def accumulate(self, other: Usage) -> None:
        self.add(other.prompt_tokens, other.completion_tokens, other.cost)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "cost": round(self.cost, 6),
        }


@dataclass
class BatchRecord:
    """Telemetry for one dispatched batch."""

    index: int
    size: int
    state: BatchState = BatchState.PENDING
    attempts: int = 0
    elapsed_seconds: float = 0.0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost: float = 0.0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "size": self.size,
            "state": self.state.value,
            "attempts": self.attempts,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "cost": round(self.cost, 6),
            "error": self.error,
        }


@dataclass
class JobResult:
    """Result of translating the catalog into one language."""

    language: str
    status: JobStatus = JobStatus.SUCCEEDED
    outcome: JobOutcome = JobOutcome.COMPLETED
    stop_reason: StopReason = StopReason.COMPLETED
    translations: List[TranslationResult] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    validation_stats: ValidationStats = field(default_factory=ValidationStats)
    strings_total: int = 0
    strings_dispatched: int = 0
    strings_skipped_existing: int = 0
    batches: List[BatchRecord] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def batches_failed(self) -> int:
        return sum(1 for b in self.batches if b.state == BatchState.FAILED_FINAL)

    @property
    def batches_succeeded(self) -> int:
        return sum(1 for b in self.batches if b.state == BatchState.SUCCEEDED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "language": self.language,
            "status": self.status.value,
            "outcome": self.outcome.value,
            "stop_reason": self.stop_reason.value,
            "strings_total": self.strings_total,
            "strings_dispatched": self.strings_dispatched,
            "strings_skipped_existing": self.strings_skipped_existing,
            "batches": [b.to_dict() for b in self.batches],
            "usage": self.usage.to_dict(),
            "validation": self.validation_stats.to_dict(),
            "error": self.error,
        }


@dataclass
class RunSummary:
    """Aggregate result of a whole run."""

    jobs: List[JobResult] = field(default_factory=list)
    merged: Dict[str, List[TranslationResult]] = field(default_factory=dict)
    usage: Usage = field(default_factory=Usage)
    validation_stats: ValidationStats = field(default_factory=ValidationStats)
    aborted: bool = False
    budget_exceeded: bool = False
    status: RunStatus = RunStatus.SUCCESS
    dry_run: bool = False

    @property
    def exit_code(self) -> int:
        return self.status.exit_code

    def job(self, language: str) -> Optional[JobResult]:
        return next((j for j in self.jobs if j.language == language), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.label,
            "exit_code": self.exit_code,
            "aborted": self.aborted,
            "budget_exceeded": self.budget_exceeded,
            "dry_run": self.dry_run,
            "usage": self.usage.to_dict(),
            "validation": self.validation_stats.to_dict(),
            "jobs": [j.to_dict() for j in self.jobs],
        }
