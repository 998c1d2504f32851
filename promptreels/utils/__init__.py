from .coercion import coerce_value, field_types, parse_bool
from .logging_setup import setup_logging
from .security import get_api_key

__all__ = [
    "coerce_value",
    "field_types",
    "parse_bool",
    "setup_logging",
    "get_api_key",
]
