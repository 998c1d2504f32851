import base64
import logging
import mimetypes
from pathlib import Path

import backoff
import openai

logger = logging.getLogger(__name__)

MAX_TRIES = 3
MAX_VALUE = 20
MAX_TIME = 120


def backoff_handler(details):
    exc = details.get("exception")
    if exc:
        logger.warning(
            f"Azure OpenAI - Retry {details['tries']} due to error: {exc}. Waiting {details['wait']:0.1f}s..."
        )


def encode_media(media_path: str) -> tuple[str, str]:
    """Return (mime_type, base64 payload) for an image file."""
    mime_type, _ = mimetypes.guess_type(media_path)
    data = Path(media_path).read_bytes()
    return mime_type or "image/jpeg", base64.b64encode(data).decode("ascii")


# Only transport-level hiccups are retried here; anything else surfaces to
# the backend, which reports it as a provider failure.
TRANSIENT_ERRORS = (
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


@backoff.on_exception(
    backoff.expo,
    TRANSIENT_ERRORS,
    max_tries=MAX_TRIES,
    max_value=MAX_VALUE,
    max_time=MAX_TIME,
    on_backoff=backoff_handler,
)
def describe_media_azure(
    client,
    model,
    media_path,
    instruction,
    max_tokens=1000,
) -> str:
    """Describe an image with a vision-capable Azure OpenAI deployment."""
    mime_type, image_b64 = encode_media(media_path)
    response = client.chat.completions.create(
        model=model,
        messages=[
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": instruction},
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:{mime_type};base64,{image_b64}"},
                    },
                ],
            }
        ],
        max_tokens=max_tokens,
    )
    return response.choices[0].message.content or ""


@backoff.on_exception(
    backoff.expo,
    TRANSIENT_ERRORS,
    max_tries=MAX_TRIES,
    max_value=MAX_VALUE,
    max_time=MAX_TIME,
    on_backoff=backoff_handler,
)
def complete_text_azure(
    client,
    model,
    msg,
    system_msg,
    temperature=0.7,
    max_tokens=200,
) -> str:
    """Plain text completion used for prompt synthesis."""
    response = client.chat.completions.create(
        model=model,
        messages=[
            {"role": "system", "content": system_msg},
            {"role": "user", "content": msg},
        ],
        max_tokens=max_tokens,
        temperature=temperature,
    )
    return response.choices[0].message.content or ""
