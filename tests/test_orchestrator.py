"""Tests for the run orchestrator: scheduling, policies, budget and merging."""

from __future__ import annotations

import pytest

from potranslate.models import (
    CatalogEntry,
    JobOutcome,
    JobResult,
    JobStatus,
    RunStatus,
    StopReason,
    TranslationResult,
)
from potranslate.orchestrator import (
    TranslationOrchestrator,
    aggregate_status,
    apply_existing,
    merge_translations,
    select_for_dispatch,
)
from potranslate.services.batch_pipeline import BatchPipeline


def _job(language, status=JobStatus.SUCCEEDED, stop_reason=StopReason.COMPLETED):
    return JobResult(language=language, status=status, stop_reason=stop_reason)


class TestAggregateStatus:
    """Tests for folding job statuses into a run status."""

    def test_all_succeeded(self):
        assert aggregate_status([_job("fr"), _job("de")], aborted=False) == RunStatus.SUCCESS

    def test_budget_stop_has_its_own_exit_code(self):
        jobs = [_job("fr"), _job("de", status=JobStatus.SKIPPED, stop_reason=StopReason.BUDGET_EXCEEDED)]
        status = aggregate_status(jobs, aborted=False)

        assert status == RunStatus.BUDGET_EXCEEDED
        assert status.exit_code == 3
        assert len({s.exit_code for s in RunStatus}) == len(RunStatus)

    def test_budget_stop_with_failed_language_is_partial(self):
        jobs = [
            _job("fr", status=JobStatus.FAILED),
            _job("de", status=JobStatus.PARTIALLY_FAILED, stop_reason=StopReason.BUDGET_EXCEEDED),
        ]
        assert aggregate_status(jobs, aborted=False) == RunStatus.PARTIAL_SUCCESS

    def test_abort_wins_over_budget_stop(self):
        jobs = [_job("fr", status=JobStatus.SKIPPED, stop_reason=StopReason.BUDGET_EXCEEDED)]
        assert aggregate_status(jobs, aborted=True) == RunStatus.FAILURE

    def test_mixed_is_partial(self):
        jobs = [_job("fr"), _job("de", status=JobStatus.SKIPPED)]
        assert aggregate_status(jobs, aborted=False).exit_code == 2

    def test_partially_failed_job_is_partial(self):
        jobs = [_job("fr", status=JobStatus.PARTIALLY_FAILED)]
        assert aggregate_status(jobs, aborted=False) == RunStatus.PARTIAL_SUCCESS

    def test_nothing_succeeded_is_failure(self):
        jobs = [_job("fr", status=JobStatus.FAILED), _job("de", status=JobStatus.SKIPPED)]
        assert aggregate_status(jobs, aborted=False) == RunStatus.FAILURE

    def test_abort_is_failure(self):
        assert aggregate_status([_job("fr")], aborted=True).exit_code == 1

    def test_no_jobs_is_failure(self):
        assert aggregate_status([], aborted=False) == RunStatus.FAILURE


class TestMergeTranslations:
    """Tests for overlaying new translations on existing ones."""

    def test_new_fills_untranslated_and_existing_is_kept(self):
        entries = [
            CatalogEntry(msgid="Hello", existing_translation=("Bonjour",)),
            CatalogEntry(msgid="Bye"),
            CatalogEntry(msgid="Later"),
        ]
        job = JobResult(language="fr")
        job.translations = [TranslationResult(msgid="Bye", msgctxt=None, forms=["Au revoir"])]
        merged = merge_translations(entries, job)

        assert [m.forms for m in merged] == [["Bonjour"], ["Au revoir"], [""]]

    def test_empty_new_result_does_not_clobber(self):
        """Verify an empty fresh result keeps the old partial translation."""
        entries = [
            CatalogEntry(msgid="%d file", msgid_plural="%d files", existing_translation=("%d fichier", "")),
        ]
        job = JobResult(language="fr")
        job.translations = [TranslationResult(msgid="%d file", msgctxt=None, forms=["", ""])]
        merged = merge_translations(entries, job, plural_count=2)

        assert merged[0].forms == ["%d fichier", ""]

    def test_force_replaces_complete_translation(self):
        entries = [CatalogEntry(msgid="Hello", existing_translation=("Salut",))]
        job = JobResult(language="fr")
        job.translations = [TranslationResult(msgid="Hello", msgctxt=None, forms=["Bonjour"])]

        assert merge_translations(entries, job)[0].forms == ["Salut"]
        assert merge_translations(entries, job, force_translate=True)[0].forms == ["Bonjour"]

    def test_existing_plural_resized_to_language(self):
        entries = [CatalogEntry(msgid="%d file", msgid_plural="%d files", existing_translation=("a", "b"))]
        merged = merge_translations(entries, None, plural_count=3)

        assert merged[0].forms == ["a", "b", ""]

    def test_idempotent(self):
        """Verify merging twice with nothing new yields the same catalog."""
        entries = [
            CatalogEntry(msgid="Hello", existing_translation=("Bonjour",)),
            CatalogEntry(msgid="Bye"),
        ]
        first = merge_translations(entries, None, plural_count=2)
        again = merge_translations(
            apply_existing(entries, {m.key: m.forms for m in first if not m.is_empty}), None, plural_count=2
        )

        assert [m.forms for m in again] == [m.forms for m in first]


class TestSelection:
    def test_select_skips_complete_translations(self):
        entries = [
            CatalogEntry(msgid="A", existing_translation=("a",)),
            CatalogEntry(msgid="B", existing_translation=("",)),
            CatalogEntry(msgid="C"),
        ]
        assert [e.msgid for e in select_for_dispatch(entries, False)] == ["B", "C"]
        assert len(select_for_dispatch(entries, True)) == 3

    def test_apply_existing_matches_by_context(self):
        entries = [CatalogEntry(msgid="Open", msgctxt="menu"), CatalogEntry(msgid="Open")]
        attached = apply_existing(entries, {("menu", "Open"): ["Ouvrir"]})

        assert attached[0].existing_translation == ("Ouvrir",)
        assert attached[1].existing_translation == ()


class TestTranslationOrchestrator:
    """Tests for whole runs against a fake client."""

    def test_requires_client_unless_dry_run(self, make_settings):
        with pytest.raises(ValueError):
            TranslationOrchestrator(make_settings(target_languages="fr"))
        TranslationOrchestrator(make_settings(target_languages="fr", dry_run=True))

    def test_successful_run(self, make_settings, make_entries, fake_client, no_sleep):
        settings = make_settings(target_languages="fr_FR,de_DE", batch_size=5)
        summary = TranslationOrchestrator(settings, fake_client, sleep=no_sleep).run(make_entries(7))

        assert summary.status == RunStatus.SUCCESS
        assert summary.exit_code == 0
        assert [job.language for job in summary.jobs] == ["fr_FR", "de_DE"]
        assert len(fake_client.calls_for("French (France)")) == 2
        assert len(fake_client.calls_for("German (Germany)")) == 2
        assert summary.merged["de_DE"][6].forms == ["tr:String 7"]
        assert summary.usage.prompt_tokens == 400

    def test_concurrent_jobs(self, make_settings, make_entries, fake_client, no_sleep):
        """Verify parallel jobs keep results in configured language order."""
        settings = make_settings(target_languages="fr,de,es,it", concurrent_jobs=3, batch_size=2)
        summary = TranslationOrchestrator(settings, fake_client, sleep=no_sleep).run(make_entries(5))

        assert [job.language for job in summary.jobs] == ["fr", "de", "es", "it"]
        assert all(job.status == JobStatus.SUCCEEDED for job in summary.jobs)
        assert len(fake_client.calls) == 12

    def test_total_budget_short_circuits(self, make_settings, make_entries, fake_client, no_sleep):
        """Verify the run-wide cap is exact and later languages send nothing."""
        settings = make_settings(
            target_languages="fr,de,es", batch_size=10, max_strings_total=25, concurrent_jobs=3,
        )
        summary = TranslationOrchestrator(settings, fake_client, sleep=no_sleep).run(make_entries(20))

        assert settings.effective_concurrent_jobs == 1
        assert sum(job.strings_dispatched for job in summary.jobs) == 25
        assert [job.strings_dispatched for job in summary.jobs] == [20, 5, 0]
        assert fake_client.calls_for("Spanish") == []
        assert [job.status for job in summary.jobs] == [
            JobStatus.SUCCEEDED, JobStatus.PARTIALLY_FAILED, JobStatus.SKIPPED,
        ]
        assert summary.job("es").stop_reason == StopReason.BUDGET_EXCEEDED
        assert summary.budget_exceeded is True
        assert summary.status == RunStatus.BUDGET_EXCEEDED
        assert summary.exit_code == 3
        assert summary.merged["de"][4].forms == ["tr:String 5"]
        assert summary.merged["de"][5].forms == [""]

    def test_total_budget_cuts_last_batch(self, make_settings, make_entries, fake_client, no_sleep):
        """Verify a truncated final batch still marks the run as budget-stopped."""
        settings = make_settings(target_languages="fr,de", batch_size=20, max_strings_total=25)
        summary = TranslationOrchestrator(settings, fake_client, sleep=no_sleep).run(make_entries(20))

        assert [job.strings_dispatched for job in summary.jobs] == [20, 5]
        assert len(fake_client.calls) == 2
        assert summary.job("fr").stop_reason == StopReason.COMPLETED
        assert summary.job("de").stop_reason == StopReason.BUDGET_EXCEEDED
        assert summary.status == RunStatus.BUDGET_EXCEEDED
        assert summary.job("de").status == JobStatus.PARTIALLY_FAILED

    def test_language_left_untranslated_by_budget_is_not_succeeded(
        self, make_settings, make_entries, fake_client, no_sleep
    ):
        """Verify a language the cap never reached is not reported as translated."""
        settings = make_settings(target_languages="fr,de", batch_size=10, max_strings_total=20)
        summary = TranslationOrchestrator(settings, fake_client, sleep=no_sleep).run(make_entries(20))

        fr, de = summary.job("fr"), summary.job("de")
        assert fr.status == JobStatus.SUCCEEDED
        assert de.strings_dispatched == 0
        assert de.stop_reason == StopReason.BUDGET_EXCEEDED
        assert de.status == JobStatus.SKIPPED
        assert fake_client.calls_for("German") == []
        assert summary.status == RunStatus.BUDGET_EXCEEDED
        assert summary.exit_code == 3

    def test_cost_ceiling_stops_after_first_batch(self, make_settings, make_entries, fake_client, no_sleep):
        """Verify the batch that crosses the cost ceiling is the last one sent."""
        settings = make_settings(target_languages="fr", model="gpt-4-turbo", max_cost=0.001, batch_size=5)
        summary = TranslationOrchestrator(settings, fake_client, sleep=no_sleep).run(make_entries(15))

        fr = summary.job("fr")
        assert len(fake_client.calls) == 1
        assert fr.strings_dispatched == 5
        assert fr.stop_reason == StopReason.BUDGET_EXCEEDED
        assert fr.status == JobStatus.PARTIALLY_FAILED
        assert summary.usage.cost == pytest.approx(0.0025)
        assert summary.merged["fr"][4].forms == ["tr:String 5"]
        assert [result.forms for result in summary.merged["fr"][5:]] == [[""]] * 10
        assert summary.status == RunStatus.BUDGET_EXCEEDED
        assert summary.exit_code == 3

    def test_cost_ceiling_with_parallel_jobs(self, make_settings, make_entries, fake_client, no_sleep):
        """Verify each in-flight job overshoots the cost ceiling by at most one batch."""
        settings = make_settings(
            target_languages="fr,de,es", concurrent_jobs=3, model="gpt-4-turbo", max_cost=0.001, batch_size=5,
        )
        summary = TranslationOrchestrator(settings, fake_client, sleep=no_sleep).run(make_entries(15))

        assert settings.effective_concurrent_jobs == 3
        for name in ("French", "German", "Spanish"):
            assert len(fake_client.calls_for(name)) <= 1
        assert 1 <= len(fake_client.calls) <= 3
        assert summary.usage.cost <= 0.001 + 3 * 0.0025 + 1e-9
        assert all(job.strings_dispatched <= 5 for job in summary.jobs)
        assert all(job.stop_reason == StopReason.BUDGET_EXCEEDED for job in summary.jobs)
        assert summary.status == RunStatus.BUDGET_EXCEEDED

    def test_skip_language_on_failure(self, make_settings, make_entries, fake_client_cls, no_sleep):
        """Verify a failing language is skipped while the others finish."""
        client = fake_client_cls(fail_when=lambda prompt: "Translate to French:" in prompt)
        settings = make_settings(
            target_languages="fr,de", max_retries=1, skip_job_on_max_retries_failure=True,
        )
        summary = TranslationOrchestrator(settings, client, sleep=no_sleep).run(make_entries(3))

        fr, de = summary.job("fr"), summary.job("de")
        assert fr.status == JobStatus.SKIPPED
        assert fr.outcome == JobOutcome.SKIP_LANGUAGE
        assert fr.translations == []
        assert de.status == JobStatus.SUCCEEDED
        assert summary.status == RunStatus.PARTIAL_SUCCESS
        assert summary.exit_code == 2

    def test_abort_run_on_failure(self, make_settings, make_entries, fake_client_cls, no_sleep):
        """Verify the stop policy aborts the run and later languages never start."""
        client = fake_client_cls(fail_when=lambda prompt: "Translate to French:" in prompt)
        settings = make_settings(
            target_languages="fr,de,es", max_retries=1, stop_on_max_retries_failure=True,
        )
        summary = TranslationOrchestrator(settings, client, sleep=no_sleep).run(make_entries(3))

        assert summary.job("fr").outcome == JobOutcome.ABORT_RUN
        assert summary.job("de").status == JobStatus.SKIPPED
        assert summary.job("de").stop_reason == StopReason.RUN_ABORTED
        assert client.calls_for("German") == []
        assert summary.aborted is True
        assert summary.exit_code == 1

    def test_existing_translations_not_resent(self, make_settings, fake_client, no_sleep):
        """Verify a fully translated catalog makes no calls and merges unchanged."""
        entries = [CatalogEntry(msgid="Hello"), CatalogEntry(msgid="%d file", msgid_plural="%d files")]
        existing = {"fr": {(None, "Hello"): ["Bonjour"], (None, "%d file"): ["%d fichier", "%d fichiers"]}}
        settings = make_settings(target_languages="fr")

        summary = TranslationOrchestrator(settings, fake_client, sleep=no_sleep).run(entries, existing)

        assert fake_client.calls == []
        assert summary.job("fr").strings_skipped_existing == 2
        assert [m.forms for m in summary.merged["fr"]] == [["Bonjour"], ["%d fichier", "%d fichiers"]]
        assert summary.status == RunStatus.SUCCESS

    def test_force_translate_resends(self, make_settings, fake_client, no_sleep):
        entries = [CatalogEntry(msgid="Hello")]
        existing = {"fr": {(None, "Hello"): ["Salut"]}}
        settings = make_settings(target_languages="fr", force_translate=True)

        summary = TranslationOrchestrator(settings, fake_client, sleep=no_sleep).run(entries, existing)

        assert len(fake_client.calls) == 1
        assert summary.merged["fr"][0].forms == ["tr:Hello"]

    def test_dry_run(self, make_settings, make_entries, no_sleep):
        settings = make_settings(target_languages="fr,ja", dry_run=True, api_key=None)
        entries = make_entries(2) + [CatalogEntry(msgid="%d file", msgid_plural="%d files")]

        summary = TranslationOrchestrator(settings, None, sleep=no_sleep).run(entries)

        assert summary.usage.cost == 0
        assert summary.dry_run is True
        assert summary.merged["fr"][0].forms == ["[fr] String 1"]
        assert summary.merged["ja"][2].forms == ["[ja] %d file"]
        assert summary.status == RunStatus.SUCCESS

    def test_job_exception_isolated(self, make_settings, make_entries, fake_client, no_sleep, monkeypatch):
        """Verify an unexpected error in one job becomes a failed result."""
        original_run = BatchPipeline.run

        def run(self, language, entries):
            if language == "de":
                raise RuntimeError("boom")
            return original_run(self, language, entries)

        monkeypatch.setattr(BatchPipeline, "run", run)
        settings = make_settings(target_languages="fr,de,es", concurrent_jobs=2)

        summary = TranslationOrchestrator(settings, fake_client, sleep=no_sleep).run(make_entries(2))

        assert summary.job("de").status == JobStatus.FAILED
        assert "boom" in summary.job("de").error
        assert summary.job("fr").status == JobStatus.SUCCEEDED
        assert summary.job("es").status == JobStatus.SUCCEEDED
        assert summary.status == RunStatus.PARTIAL_SUCCESS

    def test_dictionary_per_language(self, make_settings, fake_client, no_sleep):
        settings = make_settings(target_languages="fr,de")
        orchestrator = TranslationOrchestrator(
            settings, fake_client, dictionaries={"fr": {"Post": "Article"}}, sleep=no_sleep
        )
        orchestrator.run([CatalogEntry(msgid="New Post")])

        assert len(fake_client.calls_for("French")[0]["messages"]) == 4
        assert len(fake_client.calls_for("German")[0]["messages"]) == 2
