"""
Run configuration.

Settings come from three layers, later layers winning: an optional YAML file,
``POTRANSLATE_*`` environment variables (a ``.env`` file is honoured), and
explicit overrides such as parsed CLI options.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .languages import normalize_language_code
from .services.llm_client import PROVIDER_BASE_URLS

logger = logging.getLogger(__name__)

ENV_PREFIX = "POTRANSLATE_"

_TRUE_VALUES = {"true", "1"}
_FALSE_VALUES = {"false", "0", ""}


class ConfigError(Exception):
    """Invalid or unreadable configuration."""

    pass


class TranslationSettings(BaseModel):
    """Immutable settings for one translation run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Provider
    provider: str = Field("openai", description="Provider name: openai, openrouter, gemini, deepseek")
    api_key: Optional[str] = Field(None, description="Provider API key")
    base_url: Optional[str] = Field(None, description="Override for the provider's API base URL")
    model: str = Field("gpt-4o-mini", description="Model name sent to the provider")
    temperature: float = Field(0.7, ge=0.0, le=2.0, description="Sampling temperature")
    timeout: int = Field(60, ge=10, le=300, description="Request timeout in seconds")
    max_tokens: Optional[int] = Field(
        None, ge=1, le=32768, description="Completion token cap; estimated per batch if unset"
    )

    # Throughput
    batch_size: int = Field(20, ge=1, le=100, description="Entries per request")
    concurrent_jobs: int = Field(2, ge=1, le=10, description="Languages translated in parallel")

    # Retry policy
    max_retries: int = Field(3, ge=0, le=10, description="Retries per batch after the first attempt")
    retry_delay_ms: int = Field(2000, ge=500, le=30000, description="Fixed delay between attempts")
    stop_on_max_retries_failure: bool = Field(
        False, description="Abort the whole run when a batch exhausts its retries"
    )
    skip_job_on_max_retries_failure: bool = Field(
        False, description="Drop the language when a batch exhausts its retries"
    )

    # Budgets
    max_strings_per_job: Optional[int] = Field(None, ge=1, description="Strings dispatched per language")
    max_strings_total: Optional[int] = Field(None, ge=1, description="Strings dispatched across the run")
    max_cost: Optional[float] = Field(None, ge=0.001, description="Run cost ceiling in USD")

    # Behaviour
    force_translate: bool = Field(False, description="Re-translate entries that already have a translation")
    dry_run: bool = Field(False, description="Produce placeholder translations without calling the provider")
    test_retry_failure_rate: Optional[float] = Field(
        None, ge=0.0, le=1.0, description="Probability that an attempt fails artificially"
    )
    test_allow_complete_failure: bool = Field(
        False, description="Allow the final attempt to fail artificially too"
    )

    # Dictionary and prompt
    use_dictionary: bool = Field(False, description="Prime requests with dictionary terms")
    dictionary_path: str = Field("config/dictionaries", description="Directory of dictionary-<lang>.json files")
    prompt_file_path: Optional[str] = Field(None, description="File holding a custom system prompt")

    # Debugging
    save_debug_info: bool = Field(False, description="Write one JSON artifact per attempt")
    debug_dir: str = Field("debug", description="Directory for debug artifacts")
    verbose_level: int = Field(1, ge=0, le=3, description="0=errors, 1=normal, 2=verbose, 3=debug")

    # Languages and files
    source_language: str = Field("en", description="Source language code")
    target_languages: List[str] = Field(default_factory=list, description="Target locale codes")
    pot_file_path: Optional[str] = Field(None, description="Source template (.pot)")
    input_po_path: Optional[str] = Field(
        None, description="Existing .po to merge with; may contain {lang}"
    )
    po_header_template_path: Optional[str] = Field(None, description="JSON file of extra PO headers")
    output_dir: str = Field(".", description="Directory for generated .po files")
    po_file_prefix: str = Field("", description="Prefix for generated .po file names")
    locale_format: Literal["target_lang", "wp_locale", "iso_639_1", "iso_639_2"] = Field(
        "target_lang", description="How locale codes are spelled in output file names"
    )
    output_format: Literal["console", "json"] = Field("console", description="Summary format")
    output_file: Optional[str] = Field(None, description="Write the JSON summary here instead of stdout")

    @field_validator("target_languages", mode="before")
    @classmethod
    def _split_languages(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        if isinstance(value, (list, tuple)):
            seen: List[str] = []
            for item in value:
                code = normalize_language_code(str(item))
                if code and code not in seen:
                    seen.append(code)
            return seen
        return value

    @field_validator("provider", mode="before")
    @classmethod
    def _lower_provider(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _check_provider(self) -> "TranslationSettings":
        if self.provider not in PROVIDER_BASE_URLS and not self.base_url:
            known = ", ".join(sorted(PROVIDER_BASE_URLS))
            raise ValueError(f"unknown provider '{self.provider}' (known: {known}); set base_url to use it")
        return self

    @property
    def effective_concurrent_jobs(self) -> int:
        """A run-wide string cap is only deterministic when languages run one at a time."""
        if self.max_strings_total is not None:
            return 1
        return self.concurrent_jobs

    @property
    def retry_delay_seconds(self) -> float:
        return self.retry_delay_ms / 1000.0


def parse_bool_env(name: str, value: Optional[str]) -> bool:
    """
    Parse a boolean environment value.

    Only true/false/1/0 and the empty string are accepted (case and
    surrounding whitespace are ignored); empty means false.

    Raises:
        ConfigError: For any other value
    """
    if value is None:
        return False
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ConfigError(f"{name}: expected one of true, false, 1, 0 (got {value!r})")


def detect_provider(environ: Mapping[str, str]) -> Optional[str]:
    """Guess the provider from which provider-specific API key is set."""
    providers = list(PROVIDER_BASE_URLS)
    for provider in providers:
        if environ.get(f"{ENV_PREFIX}{provider.upper()}_API_KEY"):
            return provider
    for provider in providers:
        if environ.get(f"{provider.upper()}_API_KEY"):
            return provider
    return None


def resolve_api_key(provider: str, environ: Mapping[str, str], explicit: Optional[str] = None) -> Optional[str]:
    """
    Resolve the API key, most specific source first:
    explicit, POTRANSLATE_<PROVIDER>_API_KEY, <PROVIDER>_API_KEY,
    POTRANSLATE_API_KEY, API_KEY.
    """
    if explicit:
        return explicit
    upper = provider.upper()
    for name in (f"{ENV_PREFIX}{upper}_API_KEY", f"{upper}_API_KEY", f"{ENV_PREFIX}API_KEY", "API_KEY"):
        value = environ.get(name)
        if value:
            return value
    return None


def _load_yaml(config_path: Union[str, Path]) -> Dict[str, Any]:
    path = Path(config_path)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return data


def _settings_from_env(environ: Mapping[str, str]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for name, info in TranslationSettings.model_fields.items():
        if name == "api_key":
            continue
        env_name = f"{ENV_PREFIX}{name.upper()}"
        if env_name not in environ:
            continue
        raw = environ[env_name]
        if info.annotation is bool:
            values[name] = parse_bool_env(env_name, raw)
        elif raw.strip() != "":
            values[name] = raw.strip()
    return values


def _format_validation_error(error: ValidationError) -> str:
    lines = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "settings"
        lines.append(f"  - {location}: {item['msg']}")
    return "Invalid configuration:\n" + "\n".join(lines)


def load_settings(
    overrides: Optional[Mapping[str, Any]] = None,
    config_path: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> TranslationSettings:
    """
    Build settings from a YAML file, the environment and explicit overrides.

    Args:
        overrides: Highest-precedence values; None entries are ignored
        config_path: Optional YAML file with setting names as keys
        environ: Environment mapping; defaults to os.environ after loading .env

    Raises:
        ConfigError: If a value is malformed or out of range
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    data: Dict[str, Any] = {}
    if config_path:
        data.update(_load_yaml(config_path))
    data.update(_settings_from_env(environ))
    data.update({k: v for k, v in (overrides or {}).items() if v is not None})

    if not data.get("provider"):
        data["provider"] = detect_provider(environ) or "openai"

    provider = str(data["provider"]).strip().lower()
    data["api_key"] = resolve_api_key(provider, environ, data.get("api_key"))

    try:
        return TranslationSettings(**data)
    except ValidationError as e:
        raise ConfigError(_format_validation_error(e)) from e


def validate_settings(settings: TranslationSettings, require_pot_file: bool = True) -> List[str]:
    """
    Check that a run can start.

    Returns:
        List of error messages (empty when valid)
    """
    errors: List[str] = []

    if not settings.dry_run and not settings.api_key:
        upper = settings.provider.upper()
        errors.append(
            f"{settings.provider} API key required. Set --api-key, {ENV_PREFIX}{upper}_API_KEY, "
            f"{upper}_API_KEY or {ENV_PREFIX}API_KEY."
        )

    if not settings.target_languages:
        errors.append("Target language required (use --target-languages)")

    if require_pot_file and not settings.pot_file_path:
        errors.append("POT file required (use --pot-file-path)")

    if settings.max_strings_per_job is not None and settings.max_strings_total is not None:
        logger.warning(
            "Both max_strings_per_job (%d) and max_strings_total (%d) are set; "
            "whichever is reached first stops dispatch",
            settings.max_strings_per_job, settings.max_strings_total,
        )

    if settings.stop_on_max_retries_failure and settings.skip_job_on_max_retries_failure:
        logger.warning(
            "Both stop_on_max_retries_failure and skip_job_on_max_retries_failure are set; "
            "stopping the run takes precedence"
        )

    return errors
