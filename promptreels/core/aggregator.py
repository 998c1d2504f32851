import logging
from typing import Dict, List, Mapping, Optional

from promptreels.database.population import PerformanceSample, Population

from .evaluator import Evaluator
from .samples import Sample
from .tracking import EventLog

logger = logging.getLogger(__name__)


class Aggregator:
    """
    Federated evaluation pass: every template is scored on every domain's
    sample, results are appended to history and the weight becomes the mean
    of this pass's domain scores.
    """

    def __init__(self, evaluator: Evaluator, event_log: Optional[EventLog] = None):
        self.evaluator = evaluator
        self.event_log = event_log or EventLog()

    def evaluate_generation(
        self,
        population: Population,
        samples_by_domain: Mapping[str, Sample],
    ) -> Population:
        scores: Dict[str, List[float]] = {t.id: [] for t in population.templates}
        total = len(population.domains) * len(population.templates)
        done = 0
        logger.info(
            f"Starting evaluation: {total} requests "
            f"({len(population.domains)} domains x {len(population.templates)} templates)"
        )

        for domain in population.domains:
            sample = samples_by_domain.get(domain)
            for template in population.templates:
                done += 1
                if sample is None:
                    logger.info(f"[{done}/{total}] {template.id} @ {domain}: no sample, skipped")
                    continue

                result = self.evaluator.evaluate(
                    template.text, sample.media_path, sample.reference_text
                )
                perf = PerformanceSample(
                    score=result.score,
                    sample_reference=f"{domain}:{sample.reference or sample.media_path}",
                )
                template.record(perf)
                scores[template.id].append(perf.score)
                logger.info(
                    f"[{done}/{total}] {template.id} @ {domain}: "
                    f"score={perf.score:.4f} latency={result.latency_ms:.0f}ms"
                )
                self.event_log.log(
                    "prompt_evaluation",
                    domain=domain,
                    prompt_id=template.id,
                    score=perf.score,
                    latency_ms=result.latency_ms,
                    description=result.description,
                    error=result.error,
                )

        for template in population.templates:
            pass_scores = scores[template.id]
            if pass_scores:
                template.weight = sum(pass_scores) / len(pass_scores)

        population.recompute_best()
        return population
