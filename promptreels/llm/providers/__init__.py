from .azure_openai import complete_text_azure, describe_media_azure
from .gemini import complete_text_gemini, describe_media_gemini

__all__ = [
    "complete_text_azure",
    "describe_media_azure",
    "complete_text_gemini",
    "describe_media_gemini",
]
