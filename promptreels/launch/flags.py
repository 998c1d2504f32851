"""Marker files signalling long-running operations (e.g. ``fpo-running``).

Flags live in the temp directory so they do not survive a machine restart.
"""

import json
import logging
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

FPO_RUNNING = "fpo-running"


def default_flags_dir() -> Path:
    return Path(tempfile.gettempdir()) / "promptreels-flags"


class Flags:
    def __init__(self, flags_dir: Optional[str | Path] = None):
        self.flags_dir = Path(flags_dir) if flags_dir is not None else default_flags_dir()

    def _path(self, name: str) -> Path:
        return self.flags_dir / f"{name}.flag"

    def set(self, name: str, **data: Any) -> None:
        self.flags_dir.mkdir(parents=True, exist_ok=True)
        payload = {"set_at": datetime.now().isoformat(), **data}
        self._path(name).write_text(json.dumps(payload, indent=2, default=str))

    def has(self, name: str) -> bool:
        return self._path(name).exists()

    def get(self, name: str) -> Optional[Dict[str, Any]]:
        path = self._path(name)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text())
        except json.JSONDecodeError:
            logger.warning(f"Flag file {path} is unreadable")
            return None

    def clear(self, name: str) -> None:
        self._path(name).unlink(missing_ok=True)
