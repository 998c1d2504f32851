"""Entry points consumed by the CLI (or any thin HTTP layer)."""

import logging
import uuid
from typing import Any, Callable, Dict, List, Mapping, Optional

from promptreels.config import AppConfig
from promptreels.core.aggregator import Aggregator
from promptreels.core.evaluator import Evaluator
from promptreels.core.evolution import EvolutionEngine
from promptreels.core.orchestrator import FPOOrchestrator
from promptreels.core.samples import ArticleSampleSource, SampleSource
from promptreels.core.tracking import EventLog
from promptreels.database.population import Population, PromptTemplate
from promptreels.database.store import DocumentStore, PopulationStore
from promptreels.errors import InvalidConfiguration
from promptreels.launch.flags import Flags
from promptreels.launch.queue import JobQueue, QueueItem
from promptreels.launch.worker import QueueWorker, process_fpo_job
from promptreels.llm.backends import GenerationBackend, build_backend

logger = logging.getLogger(__name__)

FPO_CATEGORY = "fpo"


def _template_summary(template: PromptTemplate) -> Dict[str, Any]:
    return {
        "id": template.id,
        "name": template.name,
        "text": template.text,
        "weight": template.weight,
        "generation": template.generation,
        "parents": list(template.parents),
        "mutation_type": template.mutation_type,
        "latest_score": template.latest_score,
        "average_score": template.average_score,
        "samples": len(template.performance_history),
    }


class FPOService:
    def __init__(
        self,
        config: Optional[AppConfig] = None,
        backend: Optional[GenerationBackend] = None,
        sample_source: Optional[SampleSource] = None,
        flags: Optional[Flags] = None,
    ):
        self.config = (config or AppConfig()).validate()
        self.documents = DocumentStore(self.config.storage)
        self.population_store = PopulationStore(self.documents, domains=self.config.fpo.domains)
        self.queue = JobQueue(self.documents, self.config.queue)
        self._backend = backend
        self.sample_source = sample_source or ArticleSampleSource(
            self.config.storage.articles_path
        )
        self.flags = flags or Flags()

    @property
    def backend(self) -> GenerationBackend:
        # Built on first use so status commands work without credentials.
        if self._backend is None:
            self._backend = build_backend(self.config.provider)
        return self._backend

    def build_orchestrator(self, event_log: Optional[EventLog] = None) -> FPOOrchestrator:
        event_log = event_log or EventLog()
        provider = self.config.provider
        fpo = self.config.fpo
        evaluator = Evaluator(self.backend)
        engine = EvolutionEngine(
            self.backend,
            enable_crossover=fpo.enable_crossover,
            enable_mutation=fpo.enable_mutation,
            crossover_temperature=provider.crossover_temperature,
            mutation_temperature=provider.mutation_temperature,
            event_log=event_log,
        )
        return FPOOrchestrator(
            self.population_store,
            Aggregator(evaluator, event_log=event_log),
            engine,
            config=fpo,
            event_log=event_log,
        )

    def run_fpo(
        self,
        iterations: Optional[int] = None,
        evolution_every: Optional[int] = None,
        enable_evolution: Optional[bool] = None,
        job_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Enqueue an FPO job. Invalid parameters are rejected before queueing."""
        fpo = self.config.fpo
        iterations = fpo.iterations if iterations is None else int(iterations)
        evolution_every = fpo.evolution_every if evolution_every is None else int(evolution_every)
        enable_evolution = fpo.enable_evolution if enable_evolution is None else enable_evolution
        if iterations < 1:
            raise InvalidConfiguration("iterations must be >= 1")
        if enable_evolution and evolution_every <= 0:
            raise InvalidConfiguration("evolution_every must be > 0 when evolution is enabled")

        job_id = job_id or f"fpo_{uuid.uuid4().hex[:12]}"
        position = self.queue.enqueue(
            FPO_CATEGORY,
            {
                "id": job_id,
                "iterations": iterations,
                "enable_evolution": enable_evolution,
                "evolution_interval": evolution_every,
            },
        )
        return {"queued": True, "position": position, "job_id": job_id}

    def fpo_status(self) -> Dict[str, Any]:
        population: Population = self.population_store.load()
        return {
            "best_id": population.best_id,
            "population_size": len(population),
            "max_generation": population.max_generation,
            "domains": list(population.domains),
            "templates": [_template_summary(t) for t in population.ranked()],
        }

    def fpo_history(self, top_n: int = 10) -> List[Dict[str, Any]]:
        return self.fpo_status()["templates"][: max(0, top_n)]

    def queue_status(self) -> Dict[str, Dict[str, Any]]:
        return {
            category: {
                "processing": info["processing"],
                "queued_count": info["queued_count"],
            }
            for category, info in self.queue.status("all").items()
        }

    def reset_population(self) -> Population:
        logger.warning("Resetting prompt population to the seed templates")
        return self.population_store.reset()

    def clear_queue(self, category: str) -> None:
        self.queue.clear(category)

    def process_fpo(self, job: QueueItem) -> Dict[str, Any]:
        event_log = EventLog.for_run(self.config.storage.data_dir)
        return process_fpo_job(
            job,
            self.build_orchestrator(event_log),
            self.sample_source,
            flags=self.flags,
            defaults=self.config.fpo,
        )

    def build_worker(
        self, extra_processors: Optional[Mapping[str, Callable[[QueueItem], Any]]] = None
    ) -> QueueWorker:
        processors: Dict[str, Callable[[QueueItem], Any]] = {FPO_CATEGORY: self.process_fpo}
        processors.update(extra_processors or {})
        return QueueWorker(self.queue, processors)
