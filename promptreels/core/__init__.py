from .aggregator import Aggregator
from .evaluator import EvaluationResult, Evaluator
from .evolution import EvolutionEngine, EvolutionOutcome
from .orchestrator import FPOConfig, FPOOrchestrator, IterationRecord, RunSummary
from .samples import ArticleSampleSource, Sample, SampleSource, StaticSampleSource
from .tracking import EventLog

__all__ = [
    "Aggregator",
    "EvaluationResult",
    "Evaluator",
    "EvolutionEngine",
    "EvolutionOutcome",
    "FPOConfig",
    "FPOOrchestrator",
    "IterationRecord",
    "RunSummary",
    "ArticleSampleSource",
    "Sample",
    "SampleSource",
    "StaticSampleSource",
    "EventLog",
]
