"""String to field-type coercion for env vars, ``--set`` overrides and job payloads."""

import json
from dataclasses import fields, is_dataclass
from typing import Any, Dict, get_origin, get_type_hints

TRUE_STRINGS = frozenset({"1", "true", "yes", "y", "on"})
FALSE_STRINGS = frozenset({"0", "false", "no", "n", "off"})


def parse_bool(value: Any, key: str) -> bool:
    """Accept real booleans and numbers as-is, and the usual yes/no strings."""
    if not isinstance(value, str):
        return bool(value)
    lowered = value.strip().lower()
    if lowered in TRUE_STRINGS:
        return True
    if lowered in FALSE_STRINGS:
        return False
    raise ValueError(f"Invalid bool for {key}: {value!r}. Use true/false/1/0/yes/no.")


def coerce_value(raw: str, target_type: Any, key: str) -> Any:
    """Convert ``raw`` to a config field type: bool, int, float, str or a JSON list."""
    if target_type is list or get_origin(target_type) is list:
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"{key} expects a JSON list, got {raw!r}") from exc
        if not isinstance(parsed, list):
            raise ValueError(f"{key} expects a JSON list, got {type(parsed).__name__}")
        return parsed
    if target_type is bool:
        return parse_bool(raw, key)
    if target_type in (int, float):
        try:
            return target_type(raw)
        except ValueError as exc:
            raise ValueError(f"Invalid {target_type.__name__} for {key}: {raw!r}") from exc
    return raw


def field_types(config_cls: type) -> Dict[str, Any]:
    if not is_dataclass(config_cls):
        raise TypeError(f"{config_cls.__name__} is not a dataclass")
    hints = get_type_hints(config_cls)
    return {f.name: hints[f.name] for f in fields(config_cls)}
