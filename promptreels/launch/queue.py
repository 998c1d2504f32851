"""
Persistent per-category job queue.

Each category (fetch, describe, rate, fpo) owns one stored document holding
its FIFO of queued items and at most one processing item. Every operation is
a single read-modify-write transaction on that document, so exclusivity
holds across threads and processes sharing the same store. A processing item
records the queue handle that took it and a heartbeat; recover() only
reclaims slots whose heartbeat has lapsed.
"""

import logging
import os
import socket
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from promptreels.database.population import utc_timestamp
from promptreels.database.store import DocumentStore
from promptreels.errors import InvalidConfiguration

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = ["fetch", "describe", "rate", "fpo"]
IN_FLIGHT_POLICIES = ("drop", "requeue")

QUEUED = "queued"
PROCESSING = "processing"
DONE = "done"
FAILED = "failed"


@dataclass
class QueueConfig:
    categories: List[str] = field(default_factory=lambda: list(DEFAULT_CATEGORIES))
    max_attempts: int = 3  # Failed attempts before an item is discarded
    in_flight_policy: str = "drop"  # What recover() does with a stale processing item
    poll_interval_s: float = 2.0
    stale_after_s: float = 300.0  # Processing items without a heartbeat this long are reclaimable

    def validate(self) -> None:
        if not self.categories:
            raise InvalidConfiguration("queue.categories must not be empty")
        if self.max_attempts < 1:
            raise InvalidConfiguration("queue.max_attempts must be >= 1")
        if self.in_flight_policy not in IN_FLIGHT_POLICIES:
            raise InvalidConfiguration(
                f"queue.in_flight_policy must be one of {IN_FLIGHT_POLICIES}"
            )
        if self.poll_interval_s <= 0:
            raise InvalidConfiguration("queue.poll_interval_s must be > 0")
        if self.stale_after_s <= self.poll_interval_s:
            raise InvalidConfiguration("queue.stale_after_s must exceed queue.poll_interval_s")


def default_owner() -> str:
    """Identifies one queue handle: host, pid and a random suffix."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


def item_identity(item: Mapping[str, Any]) -> Optional[str]:
    """Logical identity of a submitted item: ``id``, else ``article_id``."""
    identity = item.get("id") or item.get("article_id")
    return str(identity) if identity else None


@dataclass
class QueueItem:
    id: str
    category: str
    payload: Dict[str, Any] = field(default_factory=dict)
    queued_at: str = field(default_factory=utc_timestamp)
    status: str = QUEUED
    attempts: int = 0
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    last_error: Optional[str] = None
    owner: Optional[str] = None
    heartbeat_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category,
            "payload": dict(self.payload),
            "queued_at": self.queued_at,
            "status": self.status,
            "attempts": self.attempts,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "last_error": self.last_error,
            "owner": self.owner,
            "heartbeat_at": self.heartbeat_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueueItem":
        return cls(
            id=str(data["id"]),
            category=data.get("category", ""),
            payload=dict(data.get("payload") or {}),
            queued_at=data.get("queued_at") or utc_timestamp(),
            status=data.get("status", QUEUED),
            attempts=int(data.get("attempts") or 0),
            started_at=data.get("started_at"),
            finished_at=data.get("finished_at"),
            last_error=data.get("last_error"),
            owner=data.get("owner"),
            heartbeat_at=data.get("heartbeat_at"),
        )


@dataclass
class QueueState:
    items: List[QueueItem] = field(default_factory=list)
    processing: Optional[QueueItem] = None

    def position_of(self, identity: str) -> Optional[int]:
        """1-based queue position, 0 if processing, None if unknown."""
        if self.processing is not None and self.processing.id == identity:
            return 0
        for idx, item in enumerate(self.items):
            if item.id == identity:
                return idx + 1
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [i.to_dict() for i in self.items],
            "processing": self.processing.to_dict() if self.processing else None,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "QueueState":
        if not data:
            return cls()
        processing = data.get("processing")
        return cls(
            items=[QueueItem.from_dict(i) for i in data.get("items") or []],
            processing=QueueItem.from_dict(processing) if processing else None,
        )


class JobQueue:
    def __init__(
        self,
        documents: DocumentStore,
        config: Optional[QueueConfig] = None,
        owner: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.documents = documents
        self.config = config or QueueConfig()
        self.config.validate()
        self.owner = owner or default_owner()
        self._clock = clock

    @property
    def categories(self) -> List[str]:
        return list(self.config.categories)

    @staticmethod
    def _key(category: str) -> str:
        return f"queue:{category}"

    def _check(self, category: str) -> None:
        if category not in self.config.categories:
            raise InvalidConfiguration(
                f"Unknown queue category '{category}' (known: {self.config.categories})"
            )

    def _load(self, category: str) -> QueueState:
        return QueueState.from_dict(self.documents.get(self._key(category)))

    def enqueue(self, category: str, item: Mapping[str, Any]) -> int:
        """Add an item; re-submitting a known identity returns its position."""
        self._check(category)
        identity = item_identity(item) or uuid.uuid4().hex

        def mutate(doc):
            state = QueueState.from_dict(doc)
            existing = state.position_of(identity)
            if existing is not None:
                return None, (existing, False)
            state.items.append(
                QueueItem(id=identity, category=category, payload=dict(item))
            )
            return state.to_dict(), (len(state.items), True)

        position, added = self.documents.update(self._key(category), mutate)
        if added:
            logger.info(f"Added to {category} queue: {identity} (position {position})")
        else:
            logger.info(f"Item {identity} already in {category} queue (position {position})")
        return position

    def dequeue(self, category: str) -> Optional[QueueItem]:
        """Pop the head into processing, or None if busy or empty."""
        self._check(category)
        owner = self.owner
        now = self._clock()

        def mutate(doc):
            state = QueueState.from_dict(doc)
            if state.processing is not None:
                return None, (None, state.processing.id)
            if not state.items:
                return None, (None, None)
            item = state.items.pop(0)
            item.status = PROCESSING
            item.started_at = utc_timestamp()
            item.owner = owner
            item.heartbeat_at = now
            state.processing = item
            return state.to_dict(), (item, None)

        item, busy_with = self.documents.update(self._key(category), mutate)
        if busy_with is not None:
            logger.debug(f"{category} queue already processing {busy_with}")
        elif item is not None:
            logger.info(f"Processing {category}: {item.id}")
        return item

    def complete(
        self,
        category: str,
        success: bool = True,
        result: Any = None,
        item_id: Optional[str] = None,
    ) -> Optional[QueueItem]:
        """Release the processing slot; failures are requeued at the tail
        until ``max_attempts`` is reached.

        With ``item_id`` the slot is only released if it still holds that
        item, so a worker whose job was reclaimed cannot finish another one.
        """
        self._check(category)
        max_attempts = self.config.max_attempts

        def mutate(doc):
            state = QueueState.from_dict(doc)
            item = state.processing
            if item is None:
                return None, (None, None)
            if item_id is not None and item.id != item_id:
                return None, (None, "mismatch")
            state.processing = None
            item.finished_at = utc_timestamp()
            if success:
                item.status = DONE
                return state.to_dict(), (item, "done")
            item.attempts += 1
            if result is not None:
                item.last_error = str(result)
            if item.attempts < max_attempts:
                item.status = QUEUED
                item.started_at = None
                item.finished_at = None
                item.owner = None
                item.heartbeat_at = None
                state.items.append(item)
                return state.to_dict(), (item, "requeued")
            item.status = FAILED
            return state.to_dict(), (item, "discarded")

        item, outcome = self.documents.update(self._key(category), mutate)
        if outcome == "mismatch":
            logger.warning(
                f"{category} slot no longer holds {item_id}, leaving it untouched"
            )
        elif item is None:
            logger.warning(f"No item being processed in {category} queue")
        elif outcome == "done":
            logger.info(f"Completed {category}: {item.id}")
        elif outcome == "requeued":
            logger.warning(
                f"Failed {category}: {item.id}, re-queuing "
                f"(attempt {item.attempts + 1}/{max_attempts})"
            )
        else:
            logger.error(
                f"Failed {category}: {item.id}, max attempts ({max_attempts}) "
                f"reached, discarding. Last error: {item.last_error}"
            )
        return item

    def heartbeat(self, category: str, item_id: str) -> bool:
        """Refresh the lease on a processing item this handle owns."""
        self._check(category)
        owner = self.owner
        now = self._clock()

        def mutate(doc):
            state = QueueState.from_dict(doc)
            item = state.processing
            if item is None or item.id != item_id or item.owner != owner:
                return None, False
            item.heartbeat_at = now
            return state.to_dict(), True

        return self.documents.update(self._key(category), mutate)

    def is_stale(self, item: QueueItem) -> bool:
        if item.heartbeat_at is None:
            return True
        return self._clock() - item.heartbeat_at > self.config.stale_after_s

    def status(self, category: str = "all") -> Dict[str, Any]:
        if category == "all":
            return {c: self.status(c) for c in self.config.categories}
        self._check(category)
        state = self._load(category)
        return {
            "category": category,
            "processing": state.processing.to_dict() if state.processing else None,
            "queued_count": len(state.items),
            "items": [i.to_dict() for i in state.items],
        }

    def clear(self, category: str) -> None:
        """Drop everything in a category, including the processing slot."""
        self._check(category)
        self.documents.put(self._key(category), QueueState().to_dict())
        logger.warning(f"Cleared {category} queue")

    def recover(self, force: bool = False) -> Dict[str, Tuple[str, str]]:
        """
        Release processing slots left behind by a dead worker.

        A slot is reclaimed only when its heartbeat is older than
        ``stale_after_s`` (or missing), so a second worker started against a
        live one leaves the running job alone. ``force`` reclaims every slot
        and must only be used when no worker is running. With the ``requeue``
        policy the stale item counts as one failed attempt and goes back to
        the head of its queue; with ``drop`` it is discarded.
        """
        policy = self.config.in_flight_policy
        max_attempts = self.config.max_attempts
        recovered: Dict[str, Tuple[str, str]] = {}

        for category in self.config.categories:

            def mutate(doc):
                state = QueueState.from_dict(doc)
                item = state.processing
                if item is None:
                    return None, None
                if not force and not self.is_stale(item):
                    return None, (item.id, "live", item.owner)
                previous_owner = item.owner
                state.processing = None
                if policy == "requeue":
                    item.attempts += 1
                    item.last_error = "interrupted"
                    if item.attempts < max_attempts:
                        item.status = QUEUED
                        item.started_at = None
                        item.owner = None
                        item.heartbeat_at = None
                        state.items.insert(0, item)
                        return state.to_dict(), (item.id, "requeued", previous_owner)
                return state.to_dict(), (item.id, "dropped", previous_owner)

            outcome = self.documents.update(self._key(category), mutate)
            if outcome is None:
                continue
            item_id, action, owner = outcome
            if action == "live":
                logger.info(f"{category} item {item_id} is held by live worker {owner}")
                continue
            recovered[category] = (item_id, action)
            logger.warning(f"Recovered stale {category} item {item_id} from {owner}: {action}")
        return recovered
