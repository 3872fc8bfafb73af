#!/usr/bin/env python3
"""
Command line entry point.

Usage:
    # Translate a template into two languages
    potranslate -l fr_FR,de_DE -p languages/messages.pot -o languages

    # Merge with existing catalogs, translating only what is missing
    potranslate -l fr_FR -p messages.pot --input-po-path "languages/{lang}.po"

    # See what would be sent without calling the provider
    potranslate -l ja -p messages.pot --dry-run --output-format json

Environment:
    POTRANSLATE_<SETTING>: default for any option (e.g. POTRANSLATE_BATCH_SIZE)
    POTRANSLATE_<PROVIDER>_API_KEY, <PROVIDER>_API_KEY, POTRANSLATE_API_KEY, API_KEY
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from . import __version__
from .catalog_io import (
    CatalogError,
    load_catalog,
    load_existing_translations,
    load_header_template,
    load_template_metadata,
    write_catalog,
)
from .config import ConfigError, TranslationSettings, load_settings, validate_settings
from .dictionary import DictionaryError, load_dictionary
from .logging_utils import LOG_FORMAT, configure_logging, log
from .models import EntryKey, JobStatus, RunSummary
from .orchestrator import TranslationOrchestrator
from .services.llm_client import ChatCompletionClient

logger = logging.getLogger(__name__)

WRITABLE_STATUSES = (JobStatus.SUCCEEDED, JobStatus.PARTIALLY_FAILED)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="potranslate",
        description="Translate gettext .pot templates into .po catalogs with an LLM",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", help="YAML file with default settings")

    # Required (may come from the environment)
    parser.add_argument(
        "-l", "--target-languages",
        help="Target locale codes, comma-separated (e.g. fr_FR,es_ES,de_DE)",
    )
    parser.add_argument("-p", "--pot-file-path", help="Source .pot template")
    parser.add_argument("-s", "--source-language", help='Source language code (default: "en")')

    # Output
    parser.add_argument("-o", "--output-dir", help="Directory for generated .po files")
    parser.add_argument("--output-format", choices=["console", "json"], help="Summary format")
    parser.add_argument("--output-file", help="Write the JSON summary here instead of stdout")
    parser.add_argument("--po-file-prefix", help='Prefix for output files (e.g. "app-" -> app-fr_FR.po)')
    parser.add_argument(
        "--locale-format",
        choices=["target_lang", "wp_locale", "iso_639_1", "iso_639_2"],
        help="Locale spelling in file names: target_lang (as given), wp_locale (ru_RU), iso_639_1 (ru), iso_639_2 (rus)",
    )
    parser.add_argument("--po-header-template-path", help="JSON file with extra PO headers")

    # Translation
    parser.add_argument("--provider", help="openai, openrouter, gemini or deepseek (auto-detected from keys)")
    parser.add_argument("-k", "--api-key", help="Provider API key")
    parser.add_argument("--base-url", help="Override the provider API base URL")
    parser.add_argument("-m", "--model", help='Model name (default: "gpt-4o-mini")')
    parser.add_argument("--temperature", type=float, help="Sampling temperature (0.0-2.0)")
    parser.add_argument(
        "-F", "--force-translate", action="store_true", default=None,
        help="Re-translate every string, ignoring existing translations",
    )
    parser.add_argument(
        "--input-po-path",
        help='Existing .po file to merge with; "{lang}" is replaced by each target language',
    )

    # Dictionary and prompt
    parser.add_argument("--dictionary-path", help="Directory holding dictionary-<lang>.json files")
    parser.add_argument(
        "--use-dictionary", action="store_true", default=None,
        help="Prime requests with dictionary terms for consistent terminology",
    )
    parser.add_argument("--prompt-file-path", help="File holding a custom system prompt")

    # Performance
    parser.add_argument("-b", "--batch-size", type=int, help="Strings per request (1-100)")
    parser.add_argument("-j", "--jobs", type=int, dest="concurrent_jobs", help="Languages in parallel (1-10)")
    parser.add_argument("--max-tokens", type=int, help="Completion token cap (estimated if unset)")
    parser.add_argument("--max-strings-per-job", type=int, help="Limit strings sent per language")
    parser.add_argument(
        "--max-total-strings", type=int, dest="max_strings_total",
        help="Limit strings sent across all languages (languages then run one at a time)",
    )
    parser.add_argument("--max-cost", type=float, help="Stop dispatching once this cost in USD is reached")

    # Reliability
    parser.add_argument("--max-retries", type=int, help="Retries per batch (0-10)")
    parser.add_argument(
        "--retry-delay", type=int, dest="retry_delay_ms",
        help="Delay between attempts in milliseconds (500-30000)",
    )
    parser.add_argument(
        "--abort-on-failure", action="store_true", default=None, dest="stop_on_max_retries_failure",
        help="Abort the whole run when a batch fails all retries",
    )
    parser.add_argument(
        "--skip-language-on-failure", action="store_true", default=None,
        dest="skip_job_on_max_retries_failure",
        help="Skip the language when a batch fails all retries and continue with the others",
    )
    parser.add_argument("--timeout", type=int, help="Request timeout in seconds (10-300)")

    # Debugging
    parser.add_argument(
        "-v", "--verbose-level", type=int, choices=[0, 1, 2, 3],
        help="0=errors, 1=normal, 2=verbose, 3=debug",
    )
    parser.add_argument(
        "--dry-run", action="store_true", default=None,
        help="Produce placeholder translations without calling the provider",
    )
    parser.add_argument(
        "--save-debug-info", action="store_true", default=None,
        help="Write every request and reply to the debug directory",
    )
    parser.add_argument("--debug-dir", help="Directory for debug artifacts")
    parser.add_argument(
        "--test-retry-failure-rate", type=float,
        help="[Testing] Probability that an attempt fails artificially (0.0-1.0)",
    )
    parser.add_argument(
        "--test-allow-complete-failure", action="store_true", default=None,
        help="[Testing] Allow the final attempt to fail artificially too",
    )
    return parser


def _overrides_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    values = vars(args).copy()
    values.pop("config", None)
    return {key: value for key, value in values.items() if value is not None}


def _existing_path(template: str, language: str) -> Path:
    return Path(template.replace("{lang}", language))


def load_existing_for_languages(
    input_po_path: Optional[str], languages: Sequence[str]
) -> Dict[str, Dict[EntryKey, List[str]]]:
    """Existing translations per language; missing files are skipped."""
    existing: Dict[str, Dict[EntryKey, List[str]]] = {}
    if not input_po_path:
        return existing
    for language in languages:
        path = _existing_path(input_po_path, language)
        if not path.exists():
            log(f"[{language}] No existing catalog at {path}, translating from scratch")
            continue
        existing[language] = load_existing_translations(path)
    return existing


def load_dictionaries(settings: TranslationSettings) -> Dict[str, Dict[str, str]]:
    if not settings.use_dictionary:
        return {}
    return {
        language: load_dictionary(settings.dictionary_path, language)
        for language in settings.target_languages
    }


def _template_metadata(settings: TranslationSettings) -> Dict[str, str]:
    metadata = load_template_metadata(settings.pot_file_path)
    if settings.po_header_template_path:
        metadata.update(load_header_template(settings.po_header_template_path))
    return metadata


def write_outputs(settings: TranslationSettings, entries, summary: RunSummary) -> Dict[str, str]:
    """Write one .po file per language whose job produced usable output."""
    written: Dict[str, str] = {}
    if summary.dry_run:
        for job in summary.jobs:
            log(f"[DRY RUN] Would write {job.language} catalog to {settings.output_dir}")
        return written

    metadata = _template_metadata(settings)
    for job in summary.jobs:
        if job.status not in WRITABLE_STATUSES:
            log(f"[{job.language}] Not writing catalog (status: {job.status.value})")
            continue
        path = write_catalog(
            entries,
            summary.merged[job.language],
            job.language,
            settings.output_dir,
            prefix=settings.po_file_prefix,
            template_metadata=metadata,
            locale_format=settings.locale_format,
        )
        written[job.language] = str(path)
    return written


def emit_json(settings: TranslationSettings, summary: RunSummary, written: Dict[str, str]) -> None:
    payload = summary.to_dict()
    payload["files"] = written
    text = json.dumps(payload, indent=2, ensure_ascii=False)
    if settings.output_file:
        Path(settings.output_file).write_text(text + "\n", encoding="utf-8")
        log(f"Summary written to {settings.output_file}")
    else:
        print(text)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(_overrides_from_args(args), config_path=args.config)
    except ConfigError as e:
        logging.basicConfig(level=logging.ERROR, format=LOG_FORMAT)
        logger.error("%s", e)
        return 1

    configure_logging(settings.verbose_level)

    errors = validate_settings(settings)
    if errors:
        for error in errors:
            logger.error("%s", error)
        return 1

    try:
        entries = load_catalog(settings.pot_file_path)
        existing = load_existing_for_languages(settings.input_po_path, settings.target_languages)
        dictionaries = load_dictionaries(settings)
    except (CatalogError, DictionaryError) as e:
        logger.error("%s", e)
        return 1

    if not entries:
        logger.error("No translatable entries in %s", settings.pot_file_path)
        return 1

    client = None
    if not settings.dry_run:
        client = ChatCompletionClient(settings.api_key, settings.provider, settings.base_url)

    try:
        orchestrator = TranslationOrchestrator(settings, client, dictionaries=dictionaries)
    except OSError as e:
        logger.error("Cannot read prompt file: %s", e)
        return 1

    summary = orchestrator.run(entries, existing)

    try:
        written = write_outputs(settings, entries, summary)
    except CatalogError as e:
        logger.error("%s", e)
        return 1

    if settings.output_format == "json":
        emit_json(settings, summary, written)

    return summary.exit_code


if __name__ == "__main__":
    sys.exit(main())
