"""Application configuration: one dataclass per concern, bundled in AppConfig."""

import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import load_dotenv

from promptreels.core.orchestrator import FPOConfig
from promptreels.database.store import StorageConfig
from promptreels.errors import InvalidConfiguration
from promptreels.launch.queue import QueueConfig
from promptreels.llm.client import ProviderConfig
from promptreels.utils.coercion import coerce_value, field_types

logger = logging.getLogger(__name__)

NAMESPACES = {
    "storage": StorageConfig,
    "provider": ProviderConfig,
    "fpo": FPOConfig,
    "queue": QueueConfig,
}

# env var -> (namespace, field)
ENV_OVERRIDES = {
    "DATA_DIR": ("storage", "data_dir"),
    "PROMPTREELS_DATA_DIR": ("storage", "data_dir"),
    "AI_PROVIDER": ("provider", "primary"),
    "AZURE_DEPLOYMENT_NAME": ("provider", "azure_deployment"),
    "AZURE_API_VERSION": ("provider", "azure_api_version"),
    "GEMINI_MODEL": ("provider", "gemini_model"),
    "PROMPTREELS_MIN_CALL_INTERVAL_S": ("provider", "min_call_interval_s"),
    "PROMPTREELS_REQUEST_TIMEOUT_S": ("provider", "request_timeout_s"),
    "PROMPTREELS_MAX_POPULATION": ("fpo", "max_population"),
    "PROMPTREELS_ENABLE_MUTATION": ("fpo", "enable_mutation"),
    "PROMPTREELS_IN_FLIGHT_POLICY": ("queue", "in_flight_policy"),
}


@dataclass
class AppConfig:
    storage: StorageConfig = field(default_factory=StorageConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    fpo: FPOConfig = field(default_factory=FPOConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)

    def validate(self) -> "AppConfig":
        self.provider.validate()
        self.fpo.validate()
        self.queue.validate()
        if "fpo" not in self.queue.categories:
            raise InvalidConfiguration("queue.categories must include 'fpo'")
        return self

    def with_overrides(self, overrides: Mapping[str, Mapping[str, Any]]) -> "AppConfig":
        """Return a copy with ``{namespace: {field: value}}`` applied."""
        updated: Dict[str, Any] = {}
        for namespace, values in overrides.items():
            if namespace not in NAMESPACES:
                raise InvalidConfiguration(f"Unknown config namespace '{namespace}'")
            if not values:
                continue
            known = {f.name for f in fields(NAMESPACES[namespace])}
            unknown = set(values) - known
            if unknown:
                raise InvalidConfiguration(
                    f"Unknown {namespace} fields: {', '.join(sorted(unknown))}"
                )
            updated[namespace] = replace(getattr(self, namespace), **dict(values))
        return replace(self, **updated)

    @classmethod
    def from_env(cls, env_file: Optional[str | Path] = None) -> "AppConfig":
        load_dotenv(dotenv_path=env_file or Path.cwd() / ".env", override=False)
        types_by_ns = {ns: field_types(dc) for ns, dc in NAMESPACES.items()}
        overrides: Dict[str, Dict[str, Any]] = {}
        for env_name, (namespace, field_name) in ENV_OVERRIDES.items():
            raw = os.getenv(env_name)
            if raw is None or not raw.strip():
                continue
            try:
                value = coerce_value(raw, types_by_ns[namespace][field_name], env_name)
            except ValueError as e:
                raise InvalidConfiguration(f"Invalid value for {env_name}: {raw}") from e
            overrides.setdefault(namespace, {})[field_name] = value
        return cls().with_overrides(overrides)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "AppConfig":
        with Path(path).open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise InvalidConfiguration(f"Config file {path} must contain a mapping")
        data.pop("timestamp", None)
        return cls().with_overrides(data)

    def to_dict(self) -> Dict[str, Any]:
        return {ns: asdict(getattr(self, ns)) for ns in NAMESPACES}

    def to_yaml(self, path: str | Path) -> Path:
        """Snapshot the configuration to a YAML file."""
        config_data = self.to_dict()
        config_data["timestamp"] = datetime.now().isoformat()
        config_path = Path(path)
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with config_path.open("w", encoding="utf-8") as f:
            yaml.dump(config_data, f, default_flow_style=False, indent=2)
        logger.info(f"Configuration saved to {config_path}")
        return config_path
