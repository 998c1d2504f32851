"""Credential lookup from the environment."""

import logging
import os
from typing import Optional

from promptreels.errors import InvalidConfiguration

logger = logging.getLogger(__name__)


def get_api_key(key_name: str, required: bool = True) -> Optional[str]:
    """
    Retrieve an API key from the environment.

    Args:
        key_name: Name of the environment variable
        required: Whether a missing key is a configuration error

    Returns:
        The key, or None if not required and not set

    Raises:
        InvalidConfiguration: If the key is required but not found
    """
    api_key = os.getenv(key_name)
    if api_key is not None:
        api_key = api_key.strip() or None

    if not api_key and required:
        raise InvalidConfiguration(
            f"{key_name} environment variable not set. "
            f"Please configure your API credentials before proceeding."
        )

    if api_key:
        logger.debug(f"Successfully loaded API key: {key_name}")

    return api_key
