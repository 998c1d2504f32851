from .backends import (
    AzureOpenAIBackend,
    FallbackBackend,
    GeminiBackend,
    GenerationBackend,
    RateLimiter,
    build_backend,
)
from .client import ProviderConfig, get_client_llm
from .similarity import text_similarity

__all__ = [
    "AzureOpenAIBackend",
    "FallbackBackend",
    "GeminiBackend",
    "GenerationBackend",
    "RateLimiter",
    "build_backend",
    "ProviderConfig",
    "get_client_llm",
    "text_similarity",
]
