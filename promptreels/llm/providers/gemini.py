import logging
import mimetypes
from pathlib import Path

import backoff
from google.api_core import exceptions as google_exceptions

logger = logging.getLogger(__name__)

MAX_TRIES = 3
MAX_VALUE = 20
MAX_TIME = 120

TRANSIENT_ERRORS = (
    google_exceptions.ResourceExhausted,
    google_exceptions.ServiceUnavailable,
    google_exceptions.InternalServerError,
)


def backoff_handler(details):
    exc = details.get("exception")
    if exc:
        logger.warning(
            f"Gemini - Retry {details['tries']} due to error: {exc}. Waiting {details['wait']:0.1f}s..."
        )


def _response_text(response) -> str:
    try:
        return response.text or ""
    except (ValueError, IndexError) as e:
        # Blocked or empty candidates raise instead of returning text.
        logger.error(f"Error extracting text from Gemini response: {e}")
        return ""


@backoff.on_exception(
    backoff.expo,
    TRANSIENT_ERRORS,
    max_tries=MAX_TRIES,
    max_value=MAX_VALUE,
    max_time=MAX_TIME,
    on_backoff=backoff_handler,
)
def describe_media_gemini(
    genai,
    model,
    media_path,
    instruction,
    timeout=60.0,
) -> str:
    """Describe an image with a Gemini multimodal model."""
    mime_type, _ = mimetypes.guess_type(media_path)
    data = Path(media_path).read_bytes()
    gemini_model = genai.GenerativeModel(model_name=model)
    response = gemini_model.generate_content(
        [instruction, {"mime_type": mime_type or "image/jpeg", "data": data}],
        request_options={"timeout": timeout},
    )
    return _response_text(response)


@backoff.on_exception(
    backoff.expo,
    TRANSIENT_ERRORS,
    max_tries=MAX_TRIES,
    max_value=MAX_VALUE,
    max_time=MAX_TIME,
    on_backoff=backoff_handler,
)
def complete_text_gemini(
    genai,
    model,
    msg,
    system_msg,
    temperature=0.7,
    max_tokens=200,
    timeout=60.0,
) -> str:
    generation_config = genai.types.GenerationConfig(
        temperature=temperature,
        max_output_tokens=max_tokens,
    )
    gemini_model = genai.GenerativeModel(
        model_name=model,
        system_instruction=system_msg,
        generation_config=generation_config,
    )
    response = gemini_model.generate_content(
        msg, request_options={"timeout": timeout}
    )
    return _response_text(response)
