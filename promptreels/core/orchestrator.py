import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from promptreels.database.seeds import DEFAULT_DOMAINS, SEED_IDS
from promptreels.database.store import PopulationStore
from promptreels.errors import InvalidConfiguration, StorageUnavailable

from .aggregator import Aggregator
from .evolution import EvolutionEngine
from .samples import SampleSource, draw_samples
from .tracking import EventLog

logger = logging.getLogger(__name__)


@dataclass
class FPOConfig:
    iterations: int = 3
    evolution_every: int = 2  # Evolve on every k-th iteration (never on the 1st)
    enable_evolution: bool = True
    enable_crossover: bool = True
    enable_mutation: bool = False  # Single-parent variant of the best template
    max_population: int = 10
    domains: List[str] = field(default_factory=lambda: list(DEFAULT_DOMAINS))

    def validate(self) -> None:
        if self.iterations < 1:
            raise InvalidConfiguration("fpo.iterations must be >= 1")
        if self.enable_evolution and self.evolution_every <= 0:
            raise InvalidConfiguration(
                "fpo.evolution_every must be > 0 when evolution is enabled"
            )
        if self.max_population < len(SEED_IDS):
            raise InvalidConfiguration(
                f"fpo.max_population must be >= {len(SEED_IDS)} (the seed templates)"
            )
        if not self.domains:
            raise InvalidConfiguration("fpo.domains must not be empty")


@dataclass
class IterationRecord:
    iteration: int
    best_id: Optional[str]
    population_size: int
    evolved_count: int
    max_generation: int
    evolved_ids: List[str] = field(default_factory=list)
    duration_s: float = 0.0


@dataclass
class RunSummary:
    iterations_requested: int
    records: List[IterationRecord] = field(default_factory=list)
    aborted: bool = False
    error: Optional[str] = None

    @property
    def final_best_id(self) -> Optional[str]:
        return self.records[-1].best_id if self.records else None

    @property
    def evolved_total(self) -> int:
        return sum(r.evolved_count for r in self.records)

    @property
    def max_generation(self) -> int:
        return max((r.max_generation for r in self.records), default=0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "iterations": len(self.records),
            "iterations_requested": self.iterations_requested,
            "final_best_id": self.final_best_id,
            "evolved": self.evolved_total,
            "max_generation": self.max_generation,
            "aborted": self.aborted,
            "error": self.error,
            "records": [asdict(r) for r in self.records],
        }


def should_evolve(iteration: int, evolution_every: int) -> bool:
    return evolution_every > 0 and iteration > 1 and iteration % evolution_every == 0


class FPOOrchestrator:
    """
    Runs the federated optimization loop.

    Every iteration loads the stored population, scores it, optionally evolves
    it and saves it back, so nothing survives a crash except what was saved.
    A storage failure aborts the run; the partial summary travels on the
    raised StorageUnavailable.
    """

    def __init__(
        self,
        store: PopulationStore,
        aggregator: Aggregator,
        evolution: Optional[EvolutionEngine],
        config: Optional[FPOConfig] = None,
        event_log: Optional[EventLog] = None,
    ):
        self.store = store
        self.aggregator = aggregator
        self.evolution = evolution
        self.config = config or FPOConfig()
        self.event_log = event_log or EventLog()

    def _samples(self, sample_source: SampleSource, domains: List[str]):
        try:
            return draw_samples(sample_source, domains)
        except (OSError, ValueError) as e:
            logger.error(f"Could not draw samples: {e}")
            return {}

    def run_iterations(
        self,
        n: int,
        evolution_every: int,
        sample_source: SampleSource,
        enable_evolution: Optional[bool] = None,
    ) -> RunSummary:
        evolve_enabled = (
            self.config.enable_evolution if enable_evolution is None else enable_evolution
        )
        if n < 1:
            raise InvalidConfiguration("Number of iterations must be >= 1")
        if evolve_enabled and evolution_every <= 0:
            raise InvalidConfiguration(
                "evolution_every must be > 0 when evolution is enabled"
            )
        if evolve_enabled and self.evolution is None:
            raise InvalidConfiguration("Evolution enabled but no evolution engine configured")

        summary = RunSummary(iterations_requested=n)
        for i in range(1, n + 1):
            start = time.time()
            logger.info(f"FPO iteration {i}/{n}")
            try:
                population = self.store.load()
            except StorageUnavailable as e:
                self._abort(summary, e)
                raise

            samples = self._samples(sample_source, population.domains)
            self.aggregator.evaluate_generation(population, samples)

            evolved_ids: List[str] = []
            if evolve_enabled and should_evolve(i, evolution_every):
                outcome = self.evolution.evolve_population(
                    population, self.config.max_population
                )
                evolved_ids = [t.id for t in outcome.new_templates]

            try:
                self.store.save(population)
            except StorageUnavailable as e:
                self._abort(summary, e)
                raise

            record = IterationRecord(
                iteration=i,
                best_id=population.best_id,
                population_size=len(population),
                evolved_count=len(evolved_ids),
                max_generation=population.max_generation,
                evolved_ids=evolved_ids,
                duration_s=time.time() - start,
            )
            summary.records.append(record)
            logger.info(
                f"Iteration {i} complete: best={record.best_id} "
                f"size={record.population_size} evolved={record.evolved_count} "
                f"max_gen={record.max_generation}"
            )
            self.event_log.log(
                "fpo_iteration",
                iteration=i,
                best_id=population.best_id,
                templates=[
                    {"id": t.id, "weight": t.weight, "latest_score": t.latest_score}
                    for t in population.templates
                ],
            )
        return summary

    @staticmethod
    def _abort(summary: RunSummary, error: StorageUnavailable) -> None:
        summary.aborted = True
        summary.error = str(error)
        error.summary = summary
        logger.error(
            f"FPO run aborted after {len(summary.records)} iterations: {error}"
        )
