import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from promptreels.core.orchestrator import FPOConfig, FPOOrchestrator
from promptreels.core.samples import SampleSource
from promptreels.errors import StorageUnavailable
from promptreels.utils.coercion import parse_bool

from .flags import FPO_RUNNING, Flags
from .queue import JobQueue, QueueItem

logger = logging.getLogger(__name__)

Processor = Callable[[QueueItem], Any]


def process_fpo_job(
    job: QueueItem,
    orchestrator: FPOOrchestrator,
    sample_source: SampleSource,
    flags: Optional[Flags] = None,
    defaults: Optional[FPOConfig] = None,
) -> Dict[str, Any]:
    """Run one queued FPO job to completion.

    Payload keys: ``iterations`` (3), ``enable_evolution`` (True) and
    ``evolution_interval`` (2). Storage failures propagate so the queue can
    retry the job.
    """
    defaults = defaults or orchestrator.config
    payload = job.payload
    iterations = int(payload.get("iterations", defaults.iterations))
    enable_evolution = parse_bool(
        payload.get("enable_evolution", defaults.enable_evolution), "enable_evolution"
    )
    evolution_every = int(
        payload.get("evolution_interval", payload.get("evolution_every", defaults.evolution_every))
    )

    logger.info(
        f"Starting FPO job {job.id}: {iterations} iterations, evolution "
        f"{'every ' + str(evolution_every) if enable_evolution else 'disabled'}"
    )
    flags = flags or Flags()
    flags.set(FPO_RUNNING, job_id=job.id, iterations=iterations)
    try:
        summary = orchestrator.run_iterations(
            iterations,
            evolution_every,
            sample_source,
            enable_evolution=enable_evolution,
        )
    finally:
        flags.clear(FPO_RUNNING)

    logger.info(f"FPO job {job.id} completed: {len(summary.records)} iterations")
    result = summary.to_dict()
    result["job_id"] = job.id
    return result


class QueueWorker:
    """
    Drives every queue category: one job at a time per category, categories
    in parallel on a thread pool. While a job runs, each poll refreshes its
    heartbeat so other workers see the slot as live.
    """

    def __init__(
        self,
        queue: JobQueue,
        processors: Mapping[str, Processor],
        max_workers: Optional[int] = None,
        poll_interval_s: Optional[float] = None,
    ):
        self.queue = queue
        self.processors = dict(processors)
        self.poll_interval_s = (
            poll_interval_s if poll_interval_s is not None else queue.config.poll_interval_s
        )
        self.executor = ThreadPoolExecutor(
            max_workers=max_workers or len(queue.categories),
            thread_name_prefix="promptreels-worker",
        )
        self._active: Dict[str, Tuple[Future, QueueItem]] = {}
        # Jobs whose result could not be written back; retried every poll.
        self._unfinished: Dict[str, Tuple[QueueItem, bool, Any]] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()

    def _finish(self, category: str, item: QueueItem, success: bool, result: Any) -> bool:
        try:
            self.queue.complete(category, success=success, result=result, item_id=item.id)
        except Exception as e:  # noqa: BLE001
            logger.exception(
                f"Could not record {category} job {item.id} as "
                f"{'done' if success else 'failed'}: {type(e).__name__}: {e}"
            )
            with self._lock:
                self._unfinished[category] = (item, success, result)
            return False
        return True

    def _retry_finish(self, category: str) -> bool:
        """Returns True once the category has no unrecorded job left."""
        with self._lock:
            pending = self._unfinished.pop(category, None)
        if pending is None:
            return True
        item, success, result = pending
        logger.info(f"Retrying completion of {category} job {item.id}")
        return self._finish(category, item, success, result)

    def _run_job(self, category: str, item: QueueItem, processor: Processor) -> Any:
        try:
            result = processor(item)
        except Exception as e:  # noqa: BLE001
            logger.exception(f"{category} job {item.id} failed: {type(e).__name__}: {e}")
            if isinstance(e, StorageUnavailable) and e.summary is not None:
                logger.info(
                    f"Partial run before failure: {len(e.summary.records)} iterations"
                )
            self._finish(category, item, False, f"{type(e).__name__}: {e}")
            return None
        self._finish(category, item, True, result)
        return result

    def _heartbeat(self, category: str, item: QueueItem) -> None:
        try:
            if not self.queue.heartbeat(category, item.id):
                logger.warning(f"{category} job {item.id} no longer holds its queue slot")
        except StorageUnavailable as e:
            logger.warning(f"Heartbeat for {category} job {item.id} failed: {e}")

    def process_once(self) -> List[Future]:
        """Dispatch the next job of every idle category."""
        futures: List[Future] = []
        for category in self.queue.categories:
            active = self._active.get(category)
            if active is not None and not active[0].done():
                self._heartbeat(category, active[1])
                continue
            if not self._retry_finish(category):
                continue
            item = self.queue.dequeue(category)
            if item is None:
                continue
            processor = self.processors.get(category)
            if processor is None:
                logger.error(f"No processor defined for {category}")
                self._finish(category, item, False, f"No processor defined for {category}")
                continue
            future = self.executor.submit(self._run_job, category, item, processor)
            self._active[category] = (future, item)
            futures.append(future)
        return futures

    def run_forever(self, max_cycles: Optional[int] = None, force_recover: bool = False) -> None:
        """Poll the queues until ``stop()`` is called (or ``max_cycles`` polls).

        Stale processing slots are reclaimed first; ``force_recover`` also
        reclaims slots whose heartbeat is still fresh.
        """
        self.queue.recover(force=force_recover)
        cycles = 0
        try:
            while not self._stop.is_set():
                self.process_once()
                cycles += 1
                if max_cycles is not None and cycles >= max_cycles:
                    break
                self._stop.wait(self.poll_interval_s)
        finally:
            self.shutdown()

    def stop(self) -> None:
        self._stop.set()

    def shutdown(self) -> None:
        self.executor.shutdown(wait=True)
        for category in list(self._unfinished):
            self._retry_finish(category)
