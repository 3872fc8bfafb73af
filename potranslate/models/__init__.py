from .catalog import Batch, CatalogEntry, EntryKey, TranslationResult
from .job import (
    VALIDATION_TYPES,
    BatchRecord,
    BatchState,
    JobOutcome,
    JobResult,
    JobStatus,
    RunStatus,
    RunSummary,
    StopReason,
    Usage,
    ValidationStats,
)

__all__ = [
    "Batch",
    "BatchRecord",
    "BatchState",
    "CatalogEntry",
    "EntryKey",
    "JobOutcome",
    "JobResult",
    "JobStatus",
    "RunStatus",
    "RunSummary",
    "StopReason",
    "TranslationResult",
    "Usage",
    "VALIDATION_TYPES",
    "ValidationStats",
]
