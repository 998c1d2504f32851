import pytest

from promptreels.core.evolution import EvolutionEngine, clean_generated_text
from promptreels.database import Population, PromptTemplate, build_seed_population
from promptreels.errors import ProviderError


class _SynthBackend:
    name = "fake"

    def __init__(self, outputs=None, fail=False):
        self.outputs = list(outputs or ['"Describe the frame like a sports commentator."'])
        self.fail = fail
        self.requests = []

    def describe(self, media_path, instruction):
        return ""

    def synthesize(self, prompt, temperature=0.7, system_msg=""):
        self.requests.append((prompt, temperature))
        if self.fail:
            raise ProviderError("synthesis down", provider=self.name)
        return self.outputs[min(len(self.requests), len(self.outputs)) - 1]


def _weighted_seeds(weights):
    population = build_seed_population()
    for weight, template in zip(weights, population.templates):
        template.weight = weight
    return population


def test_crossover_builds_child_with_lineage():
    population = _weighted_seeds([0.1, 0.2, 0.9, 0.3, 0.4])
    backend = _SynthBackend()
    engine = EvolutionEngine(backend)
    parent_low = population.get("technical")
    parent_high = population.get("narrative")
    parent_high.generation = 2

    child = engine.crossover(parent_low, parent_high, population)

    assert child.parents == ["narrative", "technical"]
    assert child.generation == 3
    assert child.weight == 0.0
    assert child.performance_history == []
    assert child.text == "Describe the frame like a sports commentator."
    assert child.id.startswith("evolved_gen3_")
    prompt, temperature = backend.requests[0]
    assert "PROMPT 1 (weight: 0.9000)" in prompt
    assert temperature == 0.7


def test_crossover_returns_none_on_provider_error_or_empty_text():
    population = build_seed_population()
    a, b = population.templates[:2]
    assert EvolutionEngine(_SynthBackend(fail=True)).crossover(a, b) is None
    assert EvolutionEngine(_SynthBackend(outputs=["  ''  "])).crossover(a, b) is None


def test_mutate_has_single_parent():
    population = build_seed_population()
    engine = EvolutionEngine(_SynthBackend(outputs=["A sharper instruction."]))
    child = engine.mutate(population.get("structured"), population)
    assert child.parents == ["structured"]
    assert child.generation == 1
    assert child.mutation_type == "mutation"
    assert child.id.startswith("mutated_gen1_")


def test_evolve_population_adds_child_of_top_two():
    population = _weighted_seeds([0.1, 0.2, 0.9, 0.3, 0.8])
    outcome = EvolutionEngine(_SynthBackend()).evolve_population(population, max_size=10)

    assert outcome.evolved_count == 1
    assert outcome.evicted == []
    child = outcome.new_templates[0]
    assert child.parents == ["narrative", "comprehensive"]
    assert len(population) == 6
    assert population.best_id == "narrative"


def test_evolve_population_enforces_bound_and_spares_seeds():
    population = _weighted_seeds([0.5, 0.4, 0.3, 0.2, 0.1])
    for idx, weight in enumerate([0.6, -0.2, 0.05]):
        population.add(
            PromptTemplate(
                id=f"evolved_gen1_{idx}",
                name="old child",
                text="x",
                weight=weight,
                generation=1,
                parents=["baseline", "structured"],
            )
        )
    engine = EvolutionEngine(_SynthBackend(), enable_mutation=True)

    outcome = engine.evolve_population(population, max_size=7)

    assert len(population) == 7
    assert outcome.evolved_count == 2
    assert "evolved_gen1_1" in outcome.evicted
    assert all(not tid.startswith(("baseline", "structured")) for tid in outcome.evicted)
    assert all(population.get(seed) is not None for seed in
               ["baseline", "structured", "narrative", "technical", "comprehensive"])
    assert all(population.is_known_id(tid) for tid in outcome.evicted)
    assert population.best_id == "evolved_gen1_0"


def test_evolved_generation_is_one_more_than_parents():
    population = _weighted_seeds([0.9, 0.8, 0.1, 0.1, 0.1])
    engine = EvolutionEngine(_SynthBackend(outputs=["gen one", "gen two"]))
    first = engine.evolve_population(population, max_size=10).new_templates[0]
    first.weight = 5.0
    second = engine.evolve_population(population, max_size=10).new_templates[0]

    assert second.generation == first.generation + 1
    parent_gens = [population.get(p).generation for p in second.parents]
    assert second.generation == max(parent_gens) + 1


def test_bound_cannot_evict_seeds():
    population = Population(
        templates=[PromptTemplate(id=f"s{i}", name="s", text="t") for i in range(3)]
    )
    evicted = EvolutionEngine.enforce_size(population, max_size=2)
    assert evicted == []
    assert len(population) == 3


@pytest.mark.parametrize(
    "raw, expected",
    [('"quoted"', "quoted"), ("'single'", "single"), ("  plain  ", "plain")],
)
def test_clean_generated_text_strips_wrapping_quotes(raw, expected):
    assert clean_generated_text(raw) == expected
