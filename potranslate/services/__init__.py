from .llm_client import (
    PROVIDER_BASE_URLS,
    ChatCompletionClient,
    Completion,
    ProviderError,
    ProviderFatalError,
    ProviderRetryableError,
    parse_provider_error,
)
from .pricing import MODEL_PRICING, compute_cost, estimate_tokens, get_model_pricing

__all__ = [
    "ChatCompletionClient",
    "Completion",
    "MODEL_PRICING",
    "PROVIDER_BASE_URLS",
    "ProviderError",
    "ProviderFatalError",
    "ProviderRetryableError",
    "compute_cost",
    "estimate_tokens",
    "get_model_pricing",
    "parse_provider_error",
]
