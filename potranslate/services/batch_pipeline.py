"""
Batch pipeline: translate one language's entries in bounded batches.

Each batch is budget-checked, encoded, sent to the model with a fixed-delay
retry policy, and decoded. Per-batch failures stay inside the pipeline; the
job's fate is reported through JobResult.outcome.
"""

from __future__ import annotations

import json
import logging
import random
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple
from uuid import uuid4

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_when_event_set,
    wait_fixed,
)

from ..budget import BudgetGuard, JobBudgetState, RunBudget
from ..config import TranslationSettings
from ..dictionary import build_priming_messages, find_dictionary_matches
from ..languages import get_language_name
from ..models import (
    Batch,
    BatchRecord,
    BatchState,
    CatalogEntry,
    JobOutcome,
    JobResult,
    JobStatus,
    StopReason,
    TranslationResult,
)
from ..protocol.tag_codec import DecodeResult, EncodedRequest, decode_response, encode_batch, expected_form_count
from ..validators.plural_forms import required_form_count
from .llm_client import Completion
from .pricing import compute_cost, estimate_tokens

logger = logging.getLogger(__name__)


DEFAULT_SYSTEM_PROMPT = (
    "You are a professional software localizer. Translate user interface strings "
    "into {target_language}.\n\n"
    "RULES:\n"
    "1. Preserve placeholders exactly as written (%s, %d, %1$s, {name}, {{count}}).\n"
    "2. Preserve HTML tags, entities and surrounding whitespace.\n"
    "3. Keep the tone short and natural for a user interface.\n"
    '4. Use the ctx="..." attribute to disambiguate meaning and the c="..." attribute '
    "as a translator note. Never translate or echo them.\n"
    "5. Use dictionary translations exactly when provided.\n\n"
    "OUTPUT RULES:\n"
    '- Answer every <source i="N"> with exactly one <t i="N">...</t> block using the same N.\n'
    "- For entries with <singular> and <plural>, answer with <f0>...</f0>, <f1>...</f1> "
    "tags inside the <t> block, one per plural form of the target language.\n"
    "- Escape &, <, >, \" and ' as XML entities inside translations.\n"
    "- Return ONLY the <t> blocks. No explanations, no code fences."
)

# Completion budget when max_tokens is unset.
MIN_COMPLETION_TOKENS = 256
MAX_COMPLETION_TOKENS = 32768


class ProtocolDecodeError(Exception):
    """Reply contained no tagged block at all."""

    pass


class SimulatedProviderError(Exception):
    """Artificial failure injected by the fault-injection mode."""

    pass


def chunk_entries(entries: Sequence[CatalogEntry], batch_size: int) -> List[Batch]:
    """Split entries in catalog order into batches of at most ``batch_size``."""
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    return [
        Batch(index=number, entries=list(entries[start:start + batch_size]))
        for number, start in enumerate(range(0, len(entries), batch_size))
    ]


def load_system_prompt(prompt_file_path: Optional[str]) -> str:
    """Read a custom system prompt, or return the built-in one."""
    if not prompt_file_path:
        return DEFAULT_SYSTEM_PROMPT
    path = Path(prompt_file_path)
    text = path.read_text(encoding="utf-8").strip()
    if not text:
        logger.warning("Prompt file %s is empty, using the built-in prompt", path)
        return DEFAULT_SYSTEM_PROMPT
    return text


def estimate_max_tokens(prompt: str, plural_count: int) -> int:
    """Completion budget sized from the request: replies mirror the prompt per form."""
    estimate = estimate_tokens(prompt) * 2 * max(1, plural_count)
    return max(MIN_COMPLETION_TOKENS, min(MAX_COMPLETION_TOKENS, estimate))


def placeholder_forms(entry: CatalogEntry, language: str, form_count: int) -> List[str]:
    """Deterministic dry-run output: ``[<lang>] <msgid>`` then ``[<lang>] <msgid_plural>``."""
    forms = [f"[{language}] {entry.msgid}"]
    plural_text = entry.msgid_plural or entry.msgid
    forms.extend(f"[{language}] {plural_text}" for _ in range(form_count - 1))
    return forms


class BatchPipeline:
    """
    Translate one language.

    Instances are cheap and single-use per job; shared state lives in the
    RunBudget and the abort event, both of which are thread-safe.
    """

    def __init__(
        self,
        settings: TranslationSettings,
        client: Any,
        run_budget: RunBudget,
        *,
        dictionary: Optional[Mapping[str, str]] = None,
        system_prompt: Optional[str] = None,
        abort_event: Optional[threading.Event] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.settings = settings
        self.client = client
        self.run_budget = run_budget
        self.dictionary = dictionary or {}
        self.system_prompt = system_prompt if system_prompt is not None else load_system_prompt(
            settings.prompt_file_path
        )
        self.abort_event = abort_event or threading.Event()
        self.sleep = sleep
        self.rng = rng or random.Random()

    # ------------------------------------------------------------------
    # Job loop
    # ------------------------------------------------------------------

    def run(self, language: str, entries: Sequence[CatalogEntry]) -> JobResult:
        """
        Translate ``entries`` into ``language``.

        Entries that were never dispatched (budget or abort) are absent from
        the returned translations.
        """
        result = JobResult(language=language, strings_total=len(entries))
        plural_count = required_form_count(language)
        job_budget = JobBudgetState(language=language, max_strings=self.settings.max_strings_per_job)
        batches = chunk_entries(entries, self.settings.batch_size)

        logger.info(
            "[%s] Translating %d strings in %d batches (%d plural forms)",
            language, len(entries), len(batches), plural_count,
        )

        for batch in batches:
            if self.abort_event.is_set():
                logger.info("[%s] Run aborted, stopping before batch %d", language, batch.index + 1)
                result.stop_reason = StopReason.RUN_ABORTED
                break

            granted = BudgetGuard.reserve(job_budget, self.run_budget, len(batch))
            if granted == 0:
                logger.info("[%s] Budget reached, stopping before batch %d", language, batch.index + 1)
                result.stop_reason = StopReason.BUDGET_EXCEEDED
                break
            if granted < len(batch):
                logger.info(
                    "[%s] Budget allows %d of %d strings in batch %d",
                    language, granted, len(batch), batch.index + 1,
                )
                batch = Batch(index=batch.index, entries=batch.entries[:granted])
                result.stop_reason = StopReason.BUDGET_EXCEEDED

            result.strings_dispatched += len(batch)
            record = BatchRecord(index=batch.index, size=len(batch))
            result.batches.append(record)

            if self.settings.dry_run:
                result.translations.extend(self._dry_run_batch(language, batch, plural_count, record))
                continue

            translations = self._process_batch(language, batch, plural_count, record, result)
            if translations is not None:
                result.translations.extend(translations)
                continue

            # Retries cut short by another job's abort.
            if self.abort_event.is_set() and record.attempts < self.settings.max_retries + 1:
                logger.info("[%s] Run aborted during batch %d", language, batch.index + 1)
                result.stop_reason = StopReason.RUN_ABORTED
                break

            if self.settings.stop_on_max_retries_failure:
                logger.error("[%s] Batch %d failed after all retries, aborting run", language, batch.index + 1)
                result.status = JobStatus.FAILED
                result.outcome = JobOutcome.ABORT_RUN
                result.stop_reason = StopReason.MAX_RETRIES
                result.error = record.error
                self.abort_event.set()
                return result

            if self.settings.skip_job_on_max_retries_failure:
                logger.error("[%s] Batch %d failed after all retries, skipping language", language, batch.index + 1)
                result.status = JobStatus.SKIPPED
                result.outcome = JobOutcome.SKIP_LANGUAGE
                result.stop_reason = StopReason.MAX_RETRIES
                result.error = record.error
                result.translations = []
                return result

            logger.error(
                "[%s] Batch %d failed after all retries, continuing with empty translations",
                language, batch.index + 1,
            )
            result.error = record.error
            result.translations.extend(
                TranslationResult.empty_for(entry, expected_form_count(entry, plural_count))
                for entry in batch.entries
            )

        result.status = self._final_status(result)
        logger.info(
            "[%s] Done: %s, %d/%d strings dispatched, $%.4f",
            language, result.status.value, result.strings_dispatched, result.strings_total, result.usage.cost,
        )
        return result

    @staticmethod
    def _final_status(result: JobResult) -> JobStatus:
        if result.stop_reason == StopReason.RUN_ABORTED:
            return JobStatus.SKIPPED
        if result.stop_reason == StopReason.BUDGET_EXCEEDED and result.strings_dispatched < result.strings_total:
            # Entries past the budget cut stay untranslated.
            if not result.batches:
                return JobStatus.SKIPPED
            if result.batches_succeeded == 0:
                return JobStatus.FAILED
            return JobStatus.PARTIALLY_FAILED
        if result.batches_failed == 0:
            return JobStatus.SUCCEEDED
        if result.batches_succeeded == 0:
            return JobStatus.FAILED
        return JobStatus.PARTIALLY_FAILED

    def _dry_run_batch(
        self, language: str, batch: Batch, plural_count: int, record: BatchRecord
    ) -> List[TranslationResult]:
        record.state = BatchState.SUCCEEDED
        return [
            TranslationResult(
                msgid=entry.msgid,
                msgctxt=entry.msgctxt,
                forms=placeholder_forms(entry, language, expected_form_count(entry, plural_count)),
            )
            for entry in batch.entries
        ]

    # ------------------------------------------------------------------
    # One batch
    # ------------------------------------------------------------------

    def build_messages(self, language: str, batch: Batch, plural_count: int) -> Tuple[List[Dict[str, str]], EncodedRequest]:
        """Assemble system prompt, encoded batch and dictionary priming."""
        matches = find_dictionary_matches(batch.entries, self.dictionary) if self.dictionary else []
        encoded = encode_batch(batch.entries, language, plural_count, matches)

        system_prompt = self.system_prompt.replace("{target_language}", get_language_name(language))
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": encoded.prompt},
        ]
        messages.extend(build_priming_messages(matches))
        return messages, encoded

    def _process_batch(
        self,
        language: str,
        batch: Batch,
        plural_count: int,
        record: BatchRecord,
        result: JobResult,
    ) -> Optional[List[TranslationResult]]:
        """Run one batch with retries. Returns None when it failed for good."""
        messages, encoded = self.build_messages(language, batch, plural_count)
        max_tokens = self.settings.max_tokens or estimate_max_tokens(encoded.prompt, plural_count)
        max_attempts = self.settings.max_retries + 1

        retrying = Retrying(
            stop=stop_after_attempt(max_attempts) | stop_when_event_set(self.abort_event),
            wait=wait_fixed(self.settings.retry_delay_seconds),
            retry=retry_if_exception_type(Exception),
            before_sleep=self._log_retry(language, batch, max_attempts),
            sleep=self.sleep,
            reraise=True,
        )

        record.state = BatchState.DISPATCHED
        started = time.monotonic()
        try:
            decoded = retrying(
                self._attempt, language, batch, messages, encoded, plural_count, max_tokens, record, result
            )
        except Exception as e:
            record.state = BatchState.FAILED_FINAL
            record.error = f"{type(e).__name__}: {e}"
            record.elapsed_seconds = time.monotonic() - started
            return None

        record.state = BatchState.SUCCEEDED
        record.elapsed_seconds = time.monotonic() - started
        result.validation_stats.accumulate(decoded.validation_stats)
        if decoded.validation_stats.total:
            logger.info(
                "[%s] Batch %d validation: %s",
                language, batch.index + 1, decoded.validation_stats.breakdown(),
            )
        return decoded.translations

    def _attempt(
        self,
        language: str,
        batch: Batch,
        messages: List[Dict[str, str]],
        encoded: EncodedRequest,
        plural_count: int,
        max_tokens: int,
        record: BatchRecord,
        result: JobResult,
    ) -> DecodeResult:
        record.attempts += 1
        attempt = record.attempts
        if attempt > 1:
            record.state = BatchState.RETRYING

        completion: Optional[Completion] = None
        cost = 0.0
        error: Optional[Exception] = None
        try:
            self._maybe_inject_failure(attempt)
            completion = self.client.complete(
                messages,
                model=self.settings.model,
                temperature=self.settings.temperature,
                max_tokens=max_tokens,
                timeout=self.settings.timeout,
            )
            cost = compute_cost(self.settings.model, completion.prompt_tokens, completion.completion_tokens)
            self._record_usage(completion, cost, record, result)

            decoded = decode_response(completion.content, batch.entries, plural_count, encoded.dictionary_count)
            if decoded.blocks_found == 0:
                raise ProtocolDecodeError("Reply contained no <t> blocks")
            return decoded
        except Exception as e:
            error = e
            raise
        finally:
            if self.settings.save_debug_info:
                self._save_debug_info(language, batch, attempt, messages, completion, cost, error)

    def _maybe_inject_failure(self, attempt: int) -> None:
        rate = self.settings.test_retry_failure_rate
        if not rate:
            return
        is_final = attempt >= self.settings.max_retries + 1
        if is_final and not self.settings.test_allow_complete_failure:
            return
        if self.rng.random() < rate:
            raise SimulatedProviderError(f"Simulated failure on attempt {attempt}")

    def _record_usage(self, completion: Completion, cost: float, record: BatchRecord, result: JobResult) -> None:
        record.prompt_tokens += completion.prompt_tokens
        record.completion_tokens += completion.completion_tokens
        record.cost += cost
        result.usage.add(completion.prompt_tokens, completion.completion_tokens, cost)
        self.run_budget.record_cost(cost)

    @staticmethod
    def _log_retry(language: str, batch: Batch, max_attempts: int) -> Callable[[RetryCallState], None]:
        def before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "[%s] Batch %d attempt %d/%d failed: %s",
                language, batch.index + 1, retry_state.attempt_number, max_attempts, error,
            )

        return before_sleep

    def _save_debug_info(
        self,
        language: str,
        batch: Batch,
        attempt: int,
        messages: List[Dict[str, str]],
        completion: Optional[Completion],
        cost: float,
        error: Optional[Exception],
    ) -> None:
        """Persist one attempt's request and reply for manual debugging."""
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        record: Dict[str, Any] = {
            "timestamp": timestamp,
            "language": language,
            "batch_index": batch.index,
            "batch_size": len(batch),
            "attempt": attempt,
            "model": self.settings.model,
            "messages": messages,
            "response": completion.content if completion else None,
            "usage": {
                "prompt_tokens": completion.prompt_tokens if completion else 0,
                "completion_tokens": completion.completion_tokens if completion else 0,
                "cost": cost,
            },
            "error": f"{type(error).__name__}: {error}" if error else None,
        }
        try:
            debug_dir = Path(self.settings.debug_dir)
            debug_dir.mkdir(parents=True, exist_ok=True)
            path = debug_dir / (
                f"{timestamp}_{language}_batch{batch.index + 1}_attempt{attempt}_{uuid4().hex[:8]}.json"
            )
            with path.open("w", encoding="utf-8") as fh:
                json.dump(record, fh, ensure_ascii=False, indent=2)
        except OSError as e:
            logger.warning("Failed to write debug artifact: %s", e)
