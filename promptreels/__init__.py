from .errors import InvalidConfiguration, PromptReelsError, ProviderError, StorageUnavailable

__version__ = "0.1.0"

__all__ = [
    "InvalidConfiguration",
    "PromptReelsError",
    "ProviderError",
    "StorageUnavailable",
]
