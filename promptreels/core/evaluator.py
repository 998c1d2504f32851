import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from promptreels.errors import ProviderError
from promptreels.llm.backends import GenerationBackend
from promptreels.llm.similarity import text_similarity

logger = logging.getLogger(__name__)

NEUTRAL_SCORE = 0.5


@dataclass
class EvaluationResult:
    score: float
    latency_ms: float
    description: str = ""
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class Evaluator:
    """Scores one template against one sample.

    Provider failures become a zero score with the error recorded on the
    result; nothing is retried here.
    """

    def __init__(
        self,
        backend: GenerationBackend,
        similarity: Callable[[str, str], float] = text_similarity,
    ):
        self.backend = backend
        self.similarity = similarity

    def evaluate(
        self,
        template_text: str,
        sample_path: str,
        reference_text: Optional[str] = None,
    ) -> EvaluationResult:
        start = time.perf_counter()
        try:
            description = self.backend.describe(sample_path, template_text)
        except ProviderError as e:
            latency_ms = (time.perf_counter() - start) * 1000
            logger.warning(f"Generation failed for {sample_path}: {e}")
            return EvaluationResult(score=0.0, latency_ms=latency_ms, error=str(e))
        latency_ms = (time.perf_counter() - start) * 1000

        if reference_text:
            score = float(self.similarity(description, reference_text))
        else:
            score = NEUTRAL_SCORE
        return EvaluationResult(score=score, latency_ms=latency_ms, description=description)
