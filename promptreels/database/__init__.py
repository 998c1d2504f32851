from .population import (
    MAX_SCORE,
    MIN_SCORE,
    PerformanceSample,
    Population,
    PromptTemplate,
    select_best_id,
)
from .seeds import DEFAULT_DOMAINS, SEED_IDS, build_seed_population
from .store import DocumentStore, PopulationStore, StorageConfig

__all__ = [
    "PerformanceSample",
    "Population",
    "PromptTemplate",
    "select_best_id",
    "MIN_SCORE",
    "MAX_SCORE",
    "DEFAULT_DOMAINS",
    "SEED_IDS",
    "build_seed_population",
    "DocumentStore",
    "PopulationStore",
    "StorageConfig",
]
