"""Append-only JSONL log of evaluation, iteration and evolution events."""

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class EventLog:
    def __init__(self, path: Optional[str | Path] = None):
        self.path = Path(path) if path is not None else None
        self._lock = threading.Lock()

    @classmethod
    def for_run(cls, data_dir: str | Path) -> "EventLog":
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        return cls(Path(data_dir) / "events" / f"fpo-{timestamp}.jsonl")

    def log(self, event: str, **fields: Any) -> None:
        if self.path is None:
            return
        record = {"event": event, "time": datetime.now().isoformat(), **fields}
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as f:
                    f.write(json.dumps(record, default=str) + "\n")
        except OSError as e:
            logger.warning(f"Could not write {event} event to {self.path}: {e}")

    def read(self) -> List[Dict[str, Any]]:
        if self.path is None or not self.path.exists():
            return []
        with self.path.open("r", encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]
