"""Generation backends used by the evaluator and the evolution engine.

Each backend exposes two calls: ``describe`` (multimodal description of a
media file under an instruction) and ``synthesize`` (plain text generation).
Both raise ``ProviderError`` and nothing else on failure; SDK and local file
errors are translated at the backend edge.
"""

import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Protocol

from promptreels.errors import InvalidConfiguration, ProviderError

from .client import SUPPORTED_PROVIDERS, ProviderConfig, get_client_llm, provider_available
from .providers.azure_openai import complete_text_azure, describe_media_azure
from .providers.gemini import complete_text_gemini, describe_media_gemini

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_MSG = "You are an expert at writing instructions for vision-language models."


class GenerationBackend(Protocol):
    name: str

    def describe(self, media_path: str, instruction: str) -> str: ...

    def synthesize(
        self,
        prompt: str,
        temperature: float = 0.7,
        system_msg: str = DEFAULT_SYSTEM_MSG,
    ) -> str: ...


class RateLimiter:
    """Enforces a minimum delay between consecutive external calls."""

    def __init__(
        self,
        min_interval_s: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.min_interval_s = max(0.0, float(min_interval_s))
        self._clock = clock
        self._sleep = sleep
        self._last_call: Optional[float] = None
        self._lock = threading.Lock()

    def wait(self) -> float:
        """Block until the next call is allowed. Returns the time slept."""
        with self._lock:
            slept = 0.0
            now = self._clock()
            if self._last_call is not None:
                remaining = self.min_interval_s - (now - self._last_call)
                if remaining > 0:
                    self._sleep(remaining)
                    slept = remaining
                    now = self._clock()
            self._last_call = now
            return slept


class AzureOpenAIBackend:
    name = "azure"

    def __init__(self, config: ProviderConfig, client=None, model: Optional[str] = None):
        self.config = config
        if client is None:
            client, model = get_client_llm("azure", config)
        self.client = client
        self.model = model or config.azure_deployment

    def describe(self, media_path: str, instruction: str) -> str:
        try:
            return describe_media_azure(
                self.client,
                self.model,
                media_path,
                instruction,
                max_tokens=self.config.describe_max_tokens,
            )
        except Exception as e:  # noqa: BLE001
            raise ProviderError(f"Azure OpenAI describe failed: {e}", provider=self.name) from e

    def synthesize(self, prompt, temperature=0.7, system_msg=DEFAULT_SYSTEM_MSG) -> str:
        try:
            return complete_text_azure(
                self.client,
                self.model,
                prompt,
                system_msg,
                temperature=temperature,
                max_tokens=self.config.synthesis_max_tokens,
            )
        except Exception as e:  # noqa: BLE001
            raise ProviderError(f"Azure OpenAI synthesis failed: {e}", provider=self.name) from e


class GeminiBackend:
    name = "gemini"

    def __init__(self, config: ProviderConfig, genai=None, model: Optional[str] = None):
        self.config = config
        if genai is None:
            genai, model = get_client_llm("gemini", config)
        self.genai = genai
        self.model = model or config.gemini_model

    def describe(self, media_path: str, instruction: str) -> str:
        try:
            return describe_media_gemini(
                self.genai,
                self.model,
                media_path,
                instruction,
                timeout=self.config.request_timeout_s,
            )
        except Exception as e:  # noqa: BLE001
            raise ProviderError(f"Gemini describe failed: {e}", provider=self.name) from e

    def synthesize(self, prompt, temperature=0.7, system_msg=DEFAULT_SYSTEM_MSG) -> str:
        try:
            return complete_text_gemini(
                self.genai,
                self.model,
                prompt,
                system_msg,
                temperature=temperature,
                max_tokens=self.config.synthesis_max_tokens,
                timeout=self.config.request_timeout_s,
            )
        except Exception as e:  # noqa: BLE001
            raise ProviderError(f"Gemini synthesis failed: {e}", provider=self.name) from e


class FallbackBackend:
    """
    Routes calls to the active provider and switches to the next one when a
    call fails. The switch sticks: later calls go to the provider that last
    succeeded. Every call passes through the shared rate limiter.
    """

    def __init__(
        self,
        backends: Dict[str, GenerationBackend],
        primary: str,
        fallback_enabled: bool = True,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        if not backends:
            raise InvalidConfiguration("At least one generation backend is required")
        self.backends = dict(backends)
        self.current = primary if primary in self.backends else next(iter(self.backends))
        self.fallback_enabled = fallback_enabled
        self.rate_limiter = rate_limiter or RateLimiter(0.0)

    @property
    def name(self) -> str:
        return self.current

    def _order(self) -> List[str]:
        if not self.fallback_enabled:
            return [self.current]
        return [self.current] + [n for n in self.backends if n != self.current]

    def _call(self, op: str, *args, **kwargs) -> str:
        errors = []
        for provider in self._order():
            self.rate_limiter.wait()
            try:
                result = getattr(self.backends[provider], op)(*args, **kwargs)
            except ProviderError as e:
                errors.append(f"{provider}: {e}")
                logger.warning(f"{op} failed on {provider}: {e}")
                continue
            if provider != self.current:
                logger.info(f"Switching generation provider: {self.current} -> {provider}")
                self.current = provider
            return result
        raise ProviderError(f"All providers failed for {op}: " + "; ".join(errors))

    def describe(self, media_path: str, instruction: str) -> str:
        return self._call("describe", media_path, instruction)

    def synthesize(self, prompt, temperature=0.7, system_msg=DEFAULT_SYSTEM_MSG) -> str:
        return self._call("synthesize", prompt, temperature=temperature, system_msg=system_msg)


BACKEND_CLASSES = {
    "azure": AzureOpenAIBackend,
    "gemini": GeminiBackend,
}


def build_backend(config: ProviderConfig) -> FallbackBackend:
    """Build the fallback chain from every provider with credentials.

    Raises:
        InvalidConfiguration: If no provider has credentials configured.
    """
    config.validate()
    backends: Dict[str, GenerationBackend] = {}
    names = [config.primary] + [p for p in SUPPORTED_PROVIDERS if p != config.primary]
    for provider in names:
        if provider != config.primary and not config.fallback_enabled:
            continue
        if not provider_available(provider):
            logger.info(f"Provider {provider} has no credentials configured, skipping")
            continue
        backends[provider] = BACKEND_CLASSES[provider](config)
    if not backends:
        raise InvalidConfiguration(
            "No generation provider configured. Set AZURE_OPENAI_API_KEY/"
            "AZURE_OPENAI_ENDPOINT or GEMINI_API_KEY."
        )
    return FallbackBackend(
        backends,
        primary=config.primary,
        fallback_enabled=config.fallback_enabled,
        rate_limiter=RateLimiter(config.min_call_interval_s),
    )
