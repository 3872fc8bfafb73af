"""
Run orchestrator: one batch pipeline per target language.

Usage:
    settings = load_settings({"target_languages": "fr_FR,de_DE"})
    summary = TranslationOrchestrator(settings, client).run(entries)
    sys.exit(summary.exit_code)
"""

from __future__ import annotations

import dataclasses
import logging
import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from .budget import RunBudget
from .config import TranslationSettings
from .logging_utils import log
from .models import (
    CatalogEntry,
    EntryKey,
    JobOutcome,
    JobResult,
    JobStatus,
    RunStatus,
    RunSummary,
    StopReason,
    TranslationResult,
)
from .protocol.tag_codec import expected_form_count
from .services.batch_pipeline import BatchPipeline, load_system_prompt
from .validators.plural_forms import required_form_count, validate_plural_forms

logger = logging.getLogger(__name__)

ExistingTranslations = Mapping[str, Mapping[EntryKey, Sequence[str]]]


def apply_existing(
    entries: Sequence[CatalogEntry], existing: Optional[Mapping[EntryKey, Sequence[str]]]
) -> List[CatalogEntry]:
    """Attach a language's existing translations to the source entries."""
    if not existing:
        return list(entries)
    attached = []
    for entry in entries:
        forms = existing.get(entry.key)
        if forms is not None:
            entry = dataclasses.replace(entry, existing_translation=tuple(forms))
        attached.append(entry)
    return attached


def select_for_dispatch(entries: Sequence[CatalogEntry], force_translate: bool) -> List[CatalogEntry]:
    """Entries that need a model call. Complete existing translations are skipped unless forced."""
    if force_translate:
        return list(entries)
    return [entry for entry in entries if not entry.has_translation]


def merge_translations(
    entries: Sequence[CatalogEntry],
    job_result: Optional[JobResult],
    force_translate: bool = False,
    plural_count: Optional[int] = None,
) -> List[TranslationResult]:
    """
    Overlay new translations on existing ones.

    Returns one TranslationResult per catalog entry, in catalog order. New
    non-empty results win; otherwise the entry keeps its existing
    translation (or stays empty). Without ``force_translate`` a complete
    existing translation is never replaced. Running the merge twice with no
    new results yields the same catalog.
    """
    fresh: Dict[EntryKey, TranslationResult] = {}
    if job_result is not None:
        for item in job_result.translations:
            if not item.is_empty:
                fresh[item.key] = item

    merged: List[TranslationResult] = []
    for entry in entries:
        new = fresh.get(entry.key)
        if new is not None and (force_translate or not entry.has_translation):
            merged.append(TranslationResult(msgid=entry.msgid, msgctxt=entry.msgctxt, forms=list(new.forms)))
            continue

        if entry.existing_translation:
            forms = list(entry.existing_translation)
            if plural_count is not None and entry.is_plural and len(forms) != plural_count:
                forms, _ = validate_plural_forms(forms, plural_count, entry.msgid)
            merged.append(TranslationResult(msgid=entry.msgid, msgctxt=entry.msgctxt, forms=forms))
            continue

        form_count = expected_form_count(entry, plural_count) if plural_count else 1
        merged.append(TranslationResult.empty_for(entry, form_count))

    return merged


def _stopped_by_budget(job: JobResult) -> bool:
    return job.stop_reason == StopReason.BUDGET_EXCEEDED and job.batches_failed == 0


def aggregate_status(job_results: Sequence[JobResult], aborted: bool) -> RunStatus:
    """
    Fold job statuses into the run status.

    Abort is a failure. When a budget cut dispatch short and every language
    either succeeded or only lost the strings past the cut, the run is
    budget_exceeded. Otherwise no language succeeding is a failure, all of
    them succeeding is a success and anything in between is a partial success.
    """
    if aborted or not job_results:
        return RunStatus.FAILURE

    if any(_stopped_by_budget(job) for job in job_results) and all(
        job.status == JobStatus.SUCCEEDED or _stopped_by_budget(job) for job in job_results
    ):
        return RunStatus.BUDGET_EXCEEDED

    statuses = [job.status for job in job_results]
    if all(status in (JobStatus.FAILED, JobStatus.SKIPPED) for status in statuses):
        return RunStatus.FAILURE

    if all(status == JobStatus.SUCCEEDED for status in statuses):
        return RunStatus.SUCCESS

    return RunStatus.PARTIAL_SUCCESS


class TranslationOrchestrator:
    """Schedules language jobs and aggregates their results."""

    def __init__(
        self,
        settings: TranslationSettings,
        client: Any = None,
        *,
        dictionaries: Optional[Mapping[str, Mapping[str, str]]] = None,
        system_prompt: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ):
        if client is None and not settings.dry_run:
            raise ValueError("A client is required unless dry_run is enabled")
        self.settings = settings
        self.client = client
        self.dictionaries = dictionaries or {}
        self.system_prompt = system_prompt if system_prompt is not None else load_system_prompt(
            settings.prompt_file_path
        )
        self.sleep = sleep
        self.rng = rng
        self.run_budget = RunBudget(
            max_strings_total=settings.max_strings_total,
            max_cost=settings.max_cost,
        )
        self.abort_event = threading.Event()

    def run(
        self,
        entries: Sequence[CatalogEntry],
        existing: Optional[ExistingTranslations] = None,
        target_languages: Optional[Sequence[str]] = None,
    ) -> RunSummary:
        """
        Translate ``entries`` into every target language.

        Args:
            entries: Source catalog in order
            existing: Per-language existing translations keyed by (msgctxt, msgid)
            target_languages: Defaults to settings.target_languages

        Returns:
            RunSummary with per-job results, merged catalogs and exit status
        """
        languages = list(target_languages or self.settings.target_languages)
        workers = self.settings.effective_concurrent_jobs
        existing = existing or {}

        if self.settings.max_strings_total is not None and self.settings.concurrent_jobs > 1:
            log(
                f"max_strings_total is set; running languages one at a time "
                f"(concurrent_jobs {self.settings.concurrent_jobs} ignored)"
            )

        mode = " [DRY RUN]" if self.settings.dry_run else ""
        log(f"Translating {len(entries)} strings into {len(languages)} languages with {workers} workers{mode}")

        catalogs = {language: apply_existing(entries, existing.get(language)) for language in languages}
        results: Dict[str, JobResult] = {}

        if workers == 1:
            # Sequential processing
            for language in languages:
                results[language] = self._run_job_safely(language, catalogs[language])
        else:
            # Parallel processing
            with ThreadPoolExecutor(max_workers=workers) as executor:
                futures = {
                    executor.submit(self._run_job_safely, language, catalogs[language]): language
                    for language in languages
                }
                for future in as_completed(futures):
                    language = futures[future]
                    results[language] = future.result()

        summary = RunSummary(dry_run=self.settings.dry_run)
        for language in languages:
            job = results[language]
            summary.jobs.append(job)
            summary.usage.accumulate(job.usage)
            summary.validation_stats.accumulate(job.validation_stats)
            summary.merged[language] = merge_translations(
                catalogs[language], job, self.settings.force_translate, required_form_count(language)
            )

        summary.aborted = any(job.outcome == JobOutcome.ABORT_RUN for job in summary.jobs)
        summary.budget_exceeded = any(job.stop_reason == StopReason.BUDGET_EXCEEDED for job in summary.jobs)
        summary.status = aggregate_status(summary.jobs, summary.aborted)

        self.log_summary(summary)
        return summary

    def _run_job_safely(self, language: str, entries: Sequence[CatalogEntry]) -> JobResult:
        """Run one job; any exception becomes a failed result so siblings continue."""
        if self.abort_event.is_set():
            return JobResult(
                language=language,
                status=JobStatus.SKIPPED,
                stop_reason=StopReason.RUN_ABORTED,
                strings_total=len(entries),
                error="Run aborted before this language started",
            )

        try:
            return self._run_job(language, entries)
        except Exception as e:
            logger.exception("[%s] Job failed unexpectedly", language)
            return JobResult(
                language=language,
                status=JobStatus.FAILED,
                strings_total=len(entries),
                error=f"{type(e).__name__}: {e}",
            )

    def _run_job(self, language: str, entries: Sequence[CatalogEntry]) -> JobResult:
        to_translate = select_for_dispatch(entries, self.settings.force_translate)
        skipped = len(entries) - len(to_translate)
        if skipped:
            log(f"[{language}] {skipped} strings already translated, skipping them")

        pipeline = BatchPipeline(
            self.settings,
            self.client,
            self.run_budget,
            dictionary=self.dictionaries.get(language),
            system_prompt=self.system_prompt,
            abort_event=self.abort_event,
            sleep=self.sleep,
            rng=self.rng,
        )
        result = pipeline.run(language, to_translate)
        result.strings_total = len(entries)
        result.strings_skipped_existing = skipped
        return result

    @staticmethod
    def log_summary(summary: RunSummary) -> None:
        log("")
        log("=" * 50)
        log("TRANSLATION SUMMARY" + (" (DRY RUN)" if summary.dry_run else ""))
        log("=" * 50)
        for job in summary.jobs:
            log(
                f"{job.language:<8} {job.status.value:<17} "
                f"{job.strings_dispatched}/{job.strings_total} sent, "
                f"{job.strings_skipped_existing} kept, ${job.usage.cost:.4f}"
            )
            if job.validation_stats.total:
                log(f"         validation: {job.validation_stats.breakdown()}")
            if job.error:
                log(f"         error: {job.error}")
        log("")
        log(f"Tokens:  {summary.usage.prompt_tokens} in / {summary.usage.completion_tokens} out")
        log(f"Cost:    ${summary.usage.cost:.4f}")
        if summary.budget_exceeded:
            log("Budget:  limit reached, remaining strings were not sent")
        if summary.aborted:
            log("Run aborted after a batch exhausted its retries")
        log(f"Status:  {summary.status.label}")
