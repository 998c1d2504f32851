"""
Evolution of the prompt population.

New templates come from an external synthesis call: crossover merges the two
best templates, mutation rewrites the best one. A failed or empty synthesis
yields no child and never interrupts the caller. After children are added,
the population is trimmed back to its maximum by evicting the weakest
evolved templates; seed templates (generation 0) are never evicted.
"""

import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import List, Optional

from promptreels.database.population import Population, PromptTemplate
from promptreels.errors import ProviderError
from promptreels.llm.backends import GenerationBackend

from .tracking import EventLog

logger = logging.getLogger(__name__)

CROSSOVER_SYSTEM_MSG = (
    "You are a prompt engineering expert. Create hybrid prompts by combining "
    "the best elements of given examples."
)
MUTATION_SYSTEM_MSG = (
    "You are a prompt engineering expert. Create improved variations of "
    "successful prompts."
)

CROSSOVER_TEMPLATE = """You are a prompt engineer optimizing video frame description prompts.

Given these two high-performing prompts:

PROMPT 1 (weight: {w1:.4f}):
"{t1}"

PROMPT 2 (weight: {w2:.4f}):
"{t2}"

Create a NEW prompt that combines the best aspects of both. The new prompt should:
1. Merge effective instruction patterns from both parents
2. Keep the most successful elements from each
3. Be concise and clear
4. Work well for describing video frames across different content types (news, sports, social media)

Return ONLY the new prompt text, nothing else."""

MUTATION_TEMPLATE = """You are a prompt engineer creating variations of successful prompts.

Given this high-performing prompt (weight: {w:.4f}):
"{t}"

Create a SLIGHTLY IMPROVED version by:
1. Adding one useful detail or instruction
2. OR making it more specific
3. OR adjusting the phrasing for clarity
4. Keep the core structure that makes it work

Return ONLY the new prompt text, nothing else."""

_WRAPPING_QUOTES = re.compile(r"^[\"']|[\"']$")


def clean_generated_text(text: Optional[str]) -> str:
    return _WRAPPING_QUOTES.sub("", (text or "").strip()).strip()


@dataclass
class EvolutionOutcome:
    new_templates: List[PromptTemplate] = field(default_factory=list)
    evicted: List[str] = field(default_factory=list)
    population: Optional[Population] = None

    @property
    def evolved_count(self) -> int:
        return len(self.new_templates)


class EvolutionEngine:
    def __init__(
        self,
        backend: GenerationBackend,
        enable_crossover: bool = True,
        enable_mutation: bool = False,
        crossover_temperature: float = 0.7,
        mutation_temperature: float = 0.5,
        event_log: Optional[EventLog] = None,
    ):
        self.backend = backend
        self.enable_crossover = enable_crossover
        self.enable_mutation = enable_mutation
        self.crossover_temperature = crossover_temperature
        self.mutation_temperature = mutation_temperature
        self.event_log = event_log or EventLog()

    def _synthesize(self, prompt: str, temperature: float, system_msg: str) -> Optional[str]:
        try:
            text = self.backend.synthesize(
                prompt, temperature=temperature, system_msg=system_msg
            )
        except ProviderError as e:
            logger.error(f"Prompt synthesis failed: {e}")
            return None
        cleaned = clean_generated_text(text)
        if not cleaned:
            logger.warning("Prompt synthesis returned empty content")
            return None
        return cleaned

    @staticmethod
    def _new_id(prefix: str, generation: int, population: Optional[Population]) -> str:
        while True:
            candidate = f"{prefix}_gen{generation}_{uuid.uuid4().hex[:8]}"
            if population is None or not population.is_known_id(candidate):
                return candidate

    def crossover(
        self,
        parent1: PromptTemplate,
        parent2: PromptTemplate,
        population: Optional[Population] = None,
    ) -> Optional[PromptTemplate]:
        if parent2.weight > parent1.weight:
            parent1, parent2 = parent2, parent1
        logger.info(
            f"Crossover: {parent1.id} (weight {parent1.weight:.4f}) x "
            f"{parent2.id} (weight {parent2.weight:.4f})"
        )
        request = CROSSOVER_TEMPLATE.format(
            w1=parent1.weight, t1=parent1.text, w2=parent2.weight, t2=parent2.text
        )
        text = self._synthesize(request, self.crossover_temperature, CROSSOVER_SYSTEM_MSG)
        if text is None:
            return None

        generation = max(parent1.generation, parent2.generation) + 1
        child = PromptTemplate(
            id=self._new_id("evolved", generation, population),
            name=f"Evolved Gen {generation}",
            text=text,
            weight=0.0,
            generation=generation,
            parents=[parent1.id, parent2.id],
            mutation_type="crossover",
        )
        logger.info(f"Created {child.id}: {text!r}")
        return child

    def mutate(
        self,
        template: PromptTemplate,
        population: Optional[Population] = None,
    ) -> Optional[PromptTemplate]:
        logger.info(f"Mutating {template.id} (weight {template.weight:.4f})")
        request = MUTATION_TEMPLATE.format(w=template.weight, t=template.text)
        text = self._synthesize(request, self.mutation_temperature, MUTATION_SYSTEM_MSG)
        if text is None:
            return None

        generation = template.generation + 1
        child = PromptTemplate(
            id=self._new_id("mutated", generation, population),
            name=f"Mutated Gen {generation}",
            text=text,
            weight=0.0,
            generation=generation,
            parents=[template.id],
            mutation_type="mutation",
        )
        logger.info(f"Created {child.id}: {text!r}")
        return child

    @staticmethod
    def enforce_size(population: Population, max_size: int) -> List[str]:
        """Evict the lowest-weight evolved templates until the bound holds.

        Among equal weights the most recently added template goes first.
        """
        evicted: List[str] = []
        while len(population) > max_size:
            candidates = [
                (t.weight, -idx, t.id)
                for idx, t in enumerate(population.templates)
                if t.generation > 0
            ]
            if not candidates:
                logger.warning(
                    f"Population size {len(population)} exceeds {max_size} "
                    "but only seed templates remain"
                )
                break
            _, _, victim = min(candidates)
            population.remove(victim)
            evicted.append(victim)
        return evicted

    def evolve_population(self, population: Population, max_size: int) -> EvolutionOutcome:
        ranked = population.ranked()
        children: List[PromptTemplate] = []

        if self.enable_crossover and len(ranked) >= 2:
            child = self.crossover(ranked[0], ranked[1], population)
            if child is not None:
                children.append(child)

        if self.enable_mutation and ranked:
            child = self.mutate(ranked[0], population)
            if child is not None and not any(c.id == child.id for c in children):
                children.append(child)

        for child in children:
            population.add(child)

        evicted = self.enforce_size(population, max_size)
        if evicted:
            logger.info(f"Evicted {len(evicted)} templates: {', '.join(evicted)}")
        population.recompute_best()

        self.event_log.log(
            "evolution",
            evolved=[c.id for c in children],
            evicted=evicted,
            population_size=len(population),
            max_generation=population.max_generation,
        )
        return EvolutionOutcome(new_templates=children, evicted=evicted, population=population)
