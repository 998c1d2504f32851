import json
import logging
import sqlite3
import time
from contextlib import contextmanager
from dataclasses import dataclass
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, TypeVar

from promptreels.errors import StorageUnavailable

from .population import Population
from .seeds import build_seed_population

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class StorageConfig:
    data_dir: str = "./data"
    db_filename: str = "promptreels.sqlite"
    articles_file: str = "articles.json"  # Manifest of described articles
    busy_timeout_s: float = 30.0
    max_retries: int = 5  # Attempts before StorageUnavailable is raised
    retry_delay_s: float = 0.1  # Initial delay, doubled after every failure

    @property
    def db_path(self) -> Path:
        return Path(self.data_dir) / self.db_filename

    @property
    def articles_path(self) -> Path:
        return Path(self.data_dir) / self.articles_file


def db_retry(max_retries=5, initial_delay=0.1, backoff_factor=2):
    """
    Retry document store operations on SQLite errors.

    Instance attributes ``max_retries`` / ``retry_delay_s`` on the decorated
    method's owner take precedence over the decorator defaults. Once the
    retries are exhausted the error surfaces as StorageUnavailable.
    """

    def decorator(func):
        @wraps(func)
        def wrapper(self, *args, **kwargs):
            retries = max(1, getattr(self, "max_retries", max_retries))
            delay = getattr(self, "retry_delay_s", initial_delay)
            for i in range(retries):
                try:
                    return func(self, *args, **kwargs)
                except (sqlite3.Error, OSError) as e:
                    if i == retries - 1:
                        logger.error(
                            f"Storage operation {func.__name__} failed after "
                            f"{retries} attempts: {e}"
                        )
                        raise StorageUnavailable(
                            f"{func.__name__} failed: {type(e).__name__}: {e}"
                        ) from e
                    logger.warning(
                        f"Storage operation {func.__name__} failed with "
                        f"{type(e).__name__}: {e}. "
                        f"Retrying in {delay:.2f}s..."
                    )
                    time.sleep(delay)
                    delay *= backoff_factor
            raise RuntimeError(
                f"Storage retry logic failed for function {func.__name__} without "
                "raising an exception."
            )

        return wrapper

    return decorator


class DocumentStore:
    """
    SQLite-backed key/document store.

    Every document is one JSON blob written in a single transaction, so a
    reader sees either the previous or the new version, never a partial one.
    Connections are opened per operation, which keeps the store usable from
    worker threads and from several processes sharing the same file.
    """

    def __init__(self, config: StorageConfig):
        self.config = config
        self.db_path = config.db_path
        self.max_retries = config.max_retries
        self.retry_delay_s = config.retry_delay_s
        self._initialized = False

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.config.busy_timeout_s,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        try:
            if not self._initialized:
                self._create_tables(conn)
            yield conn
        finally:
            conn.close()

    def _create_tables(self, conn: sqlite3.Connection) -> None:
        conn.execute("PRAGMA journal_mode = WAL;")
        conn.execute(f"PRAGMA busy_timeout = {int(self.config.busy_timeout_s * 1000)};")
        conn.execute("PRAGMA synchronous = NORMAL;")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS documents (
                key TEXT PRIMARY KEY,
                body TEXT NOT NULL,
                updated_at REAL NOT NULL
            )
            """
        )
        self._initialized = True
        logger.debug(f"Document store ready at {self.db_path}")

    @staticmethod
    def _decode(key: str, body: str) -> Dict[str, Any]:
        try:
            doc = json.loads(body)
        except json.JSONDecodeError as e:
            raise StorageUnavailable(f"Document '{key}' is corrupt: {e}") from e
        if not isinstance(doc, dict):
            raise StorageUnavailable(f"Document '{key}' is not a JSON object")
        return doc

    @staticmethod
    def _write(conn: sqlite3.Connection, key: str, doc: Dict[str, Any]) -> None:
        conn.execute(
            """
            INSERT INTO documents (key, body, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                body = excluded.body,
                updated_at = excluded.updated_at
            """,
            (key, json.dumps(doc), time.time()),
        )

    @db_retry()
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT body FROM documents WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            return None
        return self._decode(key, row["body"])

    @db_retry()
    def put(self, key: str, doc: Dict[str, Any]) -> None:
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                self._write(conn, key, doc)
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    @db_retry()
    def update(
        self,
        key: str,
        mutate: Callable[[Optional[Dict[str, Any]]], Tuple[Optional[Dict[str, Any]], T]],
    ) -> T:
        """
        Atomic read-modify-write of one document.

        ``mutate`` receives the current document (or None) and returns the
        document to store (None leaves it untouched) plus a value handed back
        to the caller. The write lock is held for the whole call.
        """
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                row = conn.execute(
                    "SELECT body FROM documents WHERE key = ?", (key,)
                ).fetchone()
                current = self._decode(key, row["body"]) if row is not None else None
                new_doc, result = mutate(current)
                if new_doc is not None:
                    self._write(conn, key, new_doc)
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        return result

    @db_retry()
    def delete(self, key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM documents WHERE key = ?", (key,))

    @db_retry()
    def keys(self, prefix: str = "") -> List[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT key FROM documents WHERE key LIKE ? ORDER BY key",
                (f"{prefix}%",),
            ).fetchall()
        return [row["key"] for row in rows]


class PopulationStore:
    """Load/save entry points for the prompt population.

    There is no cached copy: every load reads the stored document and every
    save replaces it whole.
    """

    KEY = "population"

    def __init__(
        self,
        documents: DocumentStore,
        domains: Optional[Sequence[str]] = None,
        seed_factory: Callable[..., Population] = build_seed_population,
    ):
        self.documents = documents
        self.domains = list(domains) if domains is not None else None
        self.seed_factory = seed_factory

    def exists(self) -> bool:
        return self.documents.get(self.KEY) is not None

    def load(self) -> Population:
        """Read the population, bootstrapping the seed set on first use."""
        doc = self.documents.get(self.KEY)
        if doc is None:
            logger.info("No stored population found, bootstrapping seed templates")
            return self.reset()
        try:
            return Population.from_dict(doc)
        except (KeyError, TypeError, ValueError) as e:
            raise StorageUnavailable(f"Stored population is invalid: {e}") from e

    def save(self, population: Population) -> None:
        ids = population.ids
        if len(ids) != len(set(ids)):
            raise ValueError("Refusing to save a population with duplicate ids")
        population.recompute_best()
        population.updated_at = time.time()
        self.documents.put(self.KEY, population.to_dict())
        logger.debug(
            f"Saved population: {len(population)} templates, best={population.best_id}"
        )

    def reset(self) -> Population:
        """Replace the stored population with a fresh seed set."""
        population = self.seed_factory(self.domains)
        self.save(population)
        return population

    def export_json(self, path: str | Path) -> Path:
        """Write the stored population to a JSON file (temp file + rename)."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = target.with_suffix(target.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(self.load().to_dict(), f, indent=2)
        tmp_path.replace(target)
        return target

    def import_json(self, path: str | Path) -> Population:
        with Path(path).open("r", encoding="utf-8") as f:
            data = json.load(f)
        population = Population.from_dict(data)
        self.save(population)
        return population
