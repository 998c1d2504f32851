from .flags import FPO_RUNNING, Flags
from .queue import DEFAULT_CATEGORIES, JobQueue, QueueConfig, QueueItem, QueueState
from .worker import QueueWorker, process_fpo_job

__all__ = [
    "FPO_RUNNING",
    "Flags",
    "DEFAULT_CATEGORIES",
    "JobQueue",
    "QueueConfig",
    "QueueItem",
    "QueueState",
    "QueueWorker",
    "process_fpo_job",
]
