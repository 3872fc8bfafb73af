"""
Run-wide and per-job budget limits.

Limits are stop conditions checked before each batch is dispatched. An
in-flight call is never cancelled, so the cost ceiling can be overshot by at
most one batch's observed spend.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Optional


class RunBudget:
    """
    Counters shared by every job of a run.

    Thread-safe: every read-modify-write goes through one lock, so two jobs
    can never both see a ceiling as not yet crossed. Counters only increase.

    Usage:
        budget = RunBudget(max_strings_total=500, max_cost=2.0)
        granted = budget.reserve_strings(20)  # before dispatch
        budget.record_cost(0.013)             # after the call returns
    """

    def __init__(self, max_strings_total: Optional[int] = None, max_cost: Optional[float] = None):
        self.max_strings_total = max_strings_total
        self.max_cost = max_cost

        self._strings_dispatched: int = 0
        self._cost: float = 0.0
        self._lock = threading.Lock()

    @property
    def strings_dispatched(self) -> int:
        with self._lock:
            return self._strings_dispatched

    @property
    def cost(self) -> float:
        with self._lock:
            return self._cost

    @property
    def strings_exhausted(self) -> bool:
        with self._lock:
            return self._strings_exhausted_locked()

    @property
    def cost_exceeded(self) -> bool:
        with self._lock:
            return self._cost_exceeded_locked()

    @property
    def exceeded(self) -> bool:
        """True once any run-wide ceiling has been reached."""
        with self._lock:
            return self._strings_exhausted_locked() or self._cost_exceeded_locked()

    def _strings_exhausted_locked(self) -> bool:
        return (
            self.max_strings_total is not None
            and self._strings_dispatched >= self.max_strings_total
        )

    def _cost_exceeded_locked(self) -> bool:
        return self.max_cost is not None and self._cost >= self.max_cost

    def reserve_strings(self, requested: int) -> int:
        """
        Reserve up to ``requested`` strings for dispatch.

        Returns:
            Number of strings granted (0 when a ceiling is reached)
        """
        if requested <= 0:
            return 0
        with self._lock:
            if self._cost_exceeded_locked():
                return 0
            granted = requested
            if self.max_strings_total is not None:
                granted = min(requested, max(0, self.max_strings_total - self._strings_dispatched))
            self._strings_dispatched += granted
            return granted

    def record_cost(self, cost: float) -> None:
        """Add observed cost after a batch returns."""
        if cost <= 0:
            return
        with self._lock:
            self._cost += cost

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "strings_dispatched": self._strings_dispatched,
                "max_strings_total": self.max_strings_total,
                "cost": self._cost,
                "max_cost": self.max_cost,
            }


@dataclass
class JobBudgetState:
    """Per-job counters. Owned by a single job thread."""

    language: str
    max_strings: Optional[int] = None
    strings_dispatched: int = 0

    @property
    def remaining(self) -> Optional[int]:
        if self.max_strings is None:
            return None
        return max(0, self.max_strings - self.strings_dispatched)


class BudgetGuard:
    """Decides whether a job may dispatch its next batch, and how much of it."""

    @staticmethod
    def may_dispatch(job: JobBudgetState, run: RunBudget) -> bool:
        if job.remaining == 0:
            return False
        return not run.exceeded

    @staticmethod
    def reserve(job: JobBudgetState, run: RunBudget, requested: int) -> int:
        """
        Reserve strings for the next batch against the job cap, then the run.

        Returns:
            Number of entries that may be dispatched (0 means stop)
        """
        if not BudgetGuard.may_dispatch(job, run):
            return 0
        wanted = requested if job.remaining is None else min(requested, job.remaining)
        granted = run.reserve_strings(wanted)
        job.strings_dispatched += granted
        return granted
