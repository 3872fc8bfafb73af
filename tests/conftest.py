"""
Pytest configuration and fixtures for the potranslate test suite.

This module provides reusable fixtures for:
- Settings with test-friendly defaults
- Sample catalog entries
- A fake chat completion client that answers the tagged-block protocol
"""

import re
import sys
import threading
from pathlib import Path

import pytest

# Ensure project root is on sys.path to import potranslate
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from potranslate.config import TranslationSettings  # noqa: E402
from potranslate.models import CatalogEntry  # noqa: E402
from potranslate.services.llm_client import Completion, ProviderRetryableError  # noqa: E402

_SOURCE_PATTERN = re.compile(r'<source i="(\d+)"[^>]*>(.*?)</source>', re.DOTALL)
_SINGULAR_PATTERN = re.compile(r"<singular>(.*?)</singular>", re.DOTALL)
_FORM_COUNT_PATTERN = re.compile(r"provide (\d+) translation")
_LANGUAGE_PATTERN = re.compile(r"^Translate to (.+):$", re.MULTILINE)


def echo_reply(prompt: str) -> str:
    """
    Answer every <source> block of a prompt with "tr:<source>".

    Plural entries get one <fN> tag per requested form.
    """
    count_match = _FORM_COUNT_PATTERN.search(prompt)
    form_count = int(count_match.group(1)) if count_match else 1

    blocks = []
    for index, body in _SOURCE_PATTERN.findall(prompt):
        singular = _SINGULAR_PATTERN.search(body)
        if singular:
            forms = "".join(f"<f{n}>tr{n}:{singular.group(1)}</f{n}>" for n in range(form_count))
            blocks.append(f'<t i="{index}">{forms}</t>')
        else:
            blocks.append(f'<t i="{index}">tr:{body}</t>')
    return "\n".join(blocks)


class FakeClient:
    """
    Stand-in for ChatCompletionClient.

    Thread-safe call log; ``fail_when(prompt)`` makes matching calls raise a
    retryable provider error.
    """

    def __init__(self, reply=None, fail_when=None, prompt_tokens=100, completion_tokens=50):
        self.reply = reply or echo_reply
        self.fail_when = fail_when
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.calls = []
        self._lock = threading.Lock()

    def complete(self, messages, model, temperature=0.7, max_tokens=None, timeout=60):
        prompt = messages[1]["content"]
        language = _LANGUAGE_PATTERN.search(prompt)
        with self._lock:
            self.calls.append({
                "messages": messages,
                "model": model,
                "max_tokens": max_tokens,
                "language": language.group(1) if language else None,
            })
        if self.fail_when is not None and self.fail_when(prompt):
            raise ProviderRetryableError("Simulated outage", code="test_outage", status=503)
        return Completion(
            content=self.reply(prompt),
            prompt_tokens=self.prompt_tokens,
            completion_tokens=self.completion_tokens,
        )

    def calls_for(self, language_name):
        with self._lock:
            return [call for call in self.calls if call["language"] == language_name]


@pytest.fixture
def make_settings():
    """Factory for settings with an API key and the shortest retry delay."""

    def _make(**overrides):
        values = {"api_key": "test-key", "retry_delay_ms": 500, "concurrent_jobs": 1}
        values.update(overrides)
        return TranslationSettings(**values)

    return _make


@pytest.fixture
def make_entries():
    """Factory for simple non-plural entries: "String 1", "String 2", ..."""

    def _make(count, prefix="String"):
        return [CatalogEntry(msgid=f"{prefix} {n}") for n in range(1, count + 1)]

    return _make


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def fake_client_cls():
    return FakeClient


@pytest.fixture
def no_sleep():
    """Sleep replacement recording requested delays."""
    delays = []

    def _sleep(seconds):
        delays.append(seconds)

    _sleep.delays = delays
    return _sleep
