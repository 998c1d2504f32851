import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Tuple

import openai
from dotenv import load_dotenv

from promptreels.errors import InvalidConfiguration
from promptreels.utils.security import get_api_key

logger = logging.getLogger(__name__)

env_path = Path.cwd() / ".env"
load_dotenv(dotenv_path=env_path, override=False)

SUPPORTED_PROVIDERS = ("azure", "gemini")


@dataclass
class ProviderConfig:
    primary: str = "azure"  # "azure" or "gemini"
    fallback_enabled: bool = True  # Switch to the other provider on failure
    azure_deployment: str = "gpt-4.1"
    azure_api_version: str = "2025-01-01-preview"
    gemini_model: str = "gemini-2.5-pro"
    request_timeout_s: float = 60.0  # A timed out call counts as a failure
    min_call_interval_s: float = 1.0  # External quota: spacing between calls
    describe_max_tokens: int = 1000
    synthesis_max_tokens: int = 200
    crossover_temperature: float = 0.7
    mutation_temperature: float = 0.5  # Less creative than crossover

    def validate(self) -> None:
        if self.primary not in SUPPORTED_PROVIDERS:
            raise InvalidConfiguration(
                f"provider.primary must be one of {SUPPORTED_PROVIDERS}, got '{self.primary}'"
            )
        if self.request_timeout_s <= 0:
            raise InvalidConfiguration("provider.request_timeout_s must be > 0")
        if self.min_call_interval_s < 0:
            raise InvalidConfiguration("provider.min_call_interval_s must be >= 0")


def provider_available(provider: str) -> bool:
    """Whether credentials for ``provider`` are present in the environment."""
    if provider == "azure":
        return get_api_key("AZURE_OPENAI_API_KEY", required=False) is not None
    if provider == "gemini":
        return (
            get_api_key("GEMINI_API_KEY", required=False) is not None
            or get_api_key("GOOGLE_API_KEY", required=False) is not None
        )
    return False


def get_client_llm(provider: str, config: ProviderConfig) -> Tuple[Any, str]:
    """Get the client and model for the given provider.

    Raises:
        InvalidConfiguration: If the provider is unknown or its credentials
            are missing.

    Returns:
        The client and the model/deployment name to call.
    """
    if provider == "azure":
        azure_api_key = get_api_key("AZURE_OPENAI_API_KEY", required=True)
        azure_endpoint = get_api_key("AZURE_OPENAI_ENDPOINT", required=True)
        client = openai.AzureOpenAI(
            api_key=azure_api_key,
            api_version=config.azure_api_version,
            azure_endpoint=azure_endpoint,
            timeout=config.request_timeout_s,
            max_retries=0,
        )
        return client, config.azure_deployment
    elif provider == "gemini":
        import google.generativeai as genai

        gemini_api_key = get_api_key("GEMINI_API_KEY", required=False) or get_api_key(
            "GOOGLE_API_KEY", required=True
        )
        genai.configure(api_key=gemini_api_key)
        return genai, config.gemini_model
    raise InvalidConfiguration(f"Provider {provider} not supported.")
