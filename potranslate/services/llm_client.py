"""
HTTP client for OpenAI-compatible chat completion endpoints.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import requests

logger = logging.getLogger(__name__)

PROVIDER_BASE_URLS: Dict[str, str] = {
    "openai": "https://api.openai.com/v1",
    "openrouter": "https://openrouter.ai/api/v1",
    "gemini": "https://generativelanguage.googleapis.com/v1beta/openai",
    "deepseek": "https://api.deepseek.com/v1",
}

MAX_ERROR_PREVIEW = 200
CONNECT_TIMEOUT = 10


class ProviderError(Exception):
    """Chat completion provider error (non-retryable by default)."""

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status: Optional[int] = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status = status
        self.retryable = retryable


class ProviderRetryableError(ProviderError):
    """Transient provider error (e.g., 429, 5xx, network, malformed payload)."""

    def __init__(self, message: str, *, code: Optional[str] = None, status: Optional[int] = None) -> None:
        super().__init__(message, code=code, status=status, retryable=True)


class ProviderFatalError(ProviderError):
    """Provider error that will not go away by itself (bad key, no credit, bad request)."""

    def __init__(self, message: str, *, code: Optional[str] = None, status: Optional[int] = None) -> None:
        super().__init__(message, code=code, status=status, retryable=False)


@dataclass
class Completion:
    """Reply content and the token usage reported by the provider."""

    content: str
    prompt_tokens: int = 0
    completion_tokens: int = 0


def _is_retryable_status(status: int) -> bool:
    if status == 429 or 500 <= status < 600:
        return True
    if 400 <= status < 500:
        return False
    # Unknown - assume retryable
    return True


def parse_provider_error(response: requests.Response) -> Dict[str, Any]:
    """
    Extract status, code and message from an error response.

    Handles both ``{"error": {"message": .., "code": ..}}`` bodies and
    non-JSON bodies.

    Returns:
        Dict with status, code, message and retryable
    """
    status = response.status_code
    code: Optional[str] = None
    message = ""

    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, list) and body:
        body = body[0]
    if isinstance(body, dict):
        error = body.get("error", body)
        if isinstance(error, dict):
            message = str(error.get("message") or "")
            raw_code = error.get("code") or error.get("type") or error.get("status")
            code = str(raw_code) if raw_code is not None else None
        elif isinstance(error, str):
            message = error

    if not message:
        message = (response.text or "")[:MAX_ERROR_PREVIEW]

    return {
        "status": status,
        "code": code or str(status),
        "message": message,
        "retryable": _is_retryable_status(status),
    }


class ChatCompletionClient:
    """
    Minimal chat completion client.

    Thread-safe as long as the injected session is (the default uses the
    module-level ``requests.post``).
    """

    def __init__(
        self,
        api_key: Optional[str],
        provider: str = "openai",
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.provider = provider
        if base_url:
            self.base_url = base_url.rstrip("/")
        elif provider in PROVIDER_BASE_URLS:
            self.base_url = PROVIDER_BASE_URLS[provider]
        else:
            raise ValueError(f"Unknown provider '{provider}' and no base_url given")
        self.session = session

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @staticmethod
    def request_timeout(timeout: float) -> Tuple[float, float]:
        """(connect, read) pair handed to requests for a ``timeout`` second budget."""
        return (min(CONNECT_TIMEOUT, timeout), timeout)

    def _post(self, payload: Dict[str, Any], timeout: float) -> requests.Response:
        post = self.session.post if self.session is not None else requests.post
        return post(
            self.endpoint,
            headers=self._headers(),
            data=json.dumps(payload),
            timeout=self.request_timeout(timeout),
        )

    def complete(
        self,
        messages: List[Dict[str, str]],
        model: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        timeout: float = 60,
    ) -> Completion:
        """
        Send one chat completion request.

        ``timeout`` caps the connection attempt (at most CONNECT_TIMEOUT
        seconds) and each wait for response bytes, so a stalled connection or
        a silent server fails within it. It is not a wall-clock limit on the
        whole call: a provider that keeps trickling bytes can run longer.

        Raises:
            ProviderRetryableError: For network errors, timeouts, rate limits,
                server errors or malformed responses
            ProviderFatalError: For auth, payment and bad-request errors
        """
        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
        }
        if max_tokens:
            payload["max_tokens"] = max_tokens

        connect_timeout, _ = self.request_timeout(timeout)
        try:
            resp = self._post(payload, timeout)
        except requests.Timeout as e:
            raise ProviderRetryableError(
                f"Request timed out (connect {connect_timeout}s, read {timeout}s): {e}", code="timeout"
            ) from e
        except requests.RequestException as e:
            raise ProviderRetryableError(f"Network error: {e}", code="network_error") from e

        if not resp.ok:
            info = parse_provider_error(resp)
            message = info["message"] or f"{self.provider} error {info['status']}"
            logger.debug(
                "Provider %s returned %s (%s): %s",
                self.provider, info["status"], info["code"], message,
            )
            if info["retryable"]:
                raise ProviderRetryableError(message, code=info["code"], status=info["status"])
            raise ProviderFatalError(message, code=info["code"], status=info["status"])

        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderRetryableError(
                f"Malformed response from {self.provider} (invalid JSON)", code="invalid_json"
            ) from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderRetryableError(
                f"Malformed response from {self.provider} (missing content)", code="invalid_payload"
            ) from e

        if content is None:
            content = ""

        usage = data.get("usage") or {}
        return Completion(
            content=content,
            prompt_tokens=int(usage.get("prompt_tokens") or 0),
            completion_tokens=int(usage.get("completion_tokens") or 0),
        )
