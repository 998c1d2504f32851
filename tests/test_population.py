import pytest

from promptreels.database import (
    SEED_IDS,
    PerformanceSample,
    Population,
    PromptTemplate,
    build_seed_population,
    select_best_id,
)


def _template(tid: str, weight: float, generation: int = 0, parents=None) -> PromptTemplate:
    return PromptTemplate(
        id=tid,
        name=tid,
        text=f"text for {tid}",
        weight=weight,
        generation=generation,
        parents=list(parents or []),
    )


def test_seed_population_has_equal_positive_weights():
    population = build_seed_population()
    assert population.ids == SEED_IDS
    assert {t.weight for t in population.templates} == {1.0}
    assert all(t.generation == 0 and t.parents == [] for t in population.templates)
    assert population.domains == ["news", "sports", "reels"]
    assert population.best_id == "baseline"


def test_select_best_id_prefers_first_on_ties():
    templates = [_template("a", 0.5), _template("b", 0.9), _template("c", 0.9)]
    assert select_best_id(templates) == "b"
    assert select_best_id([]) is None


def test_negative_child_is_never_best():
    population = build_seed_population()
    for weight, template in zip([0.8, 0.7, 0.6, 0.5, 0.4], population.templates):
        template.weight = weight
    population.add(
        _template("evolved_gen1_x", -0.3, generation=1, parents=["baseline", "structured"])
    )
    assert population.recompute_best() == "baseline"


def test_duplicate_ids_are_rejected():
    with pytest.raises(ValueError):
        Population(templates=[_template("a", 0.1), _template("a", 0.2)])


def test_removed_ids_are_never_reused():
    population = Population(templates=[_template("a", 0.1), _template("b", 0.2, generation=1)])
    population.remove("b")
    assert population.ids == ["a"]
    assert population.is_known_id("b")
    with pytest.raises(ValueError):
        population.add(_template("b", 0.0, generation=1))


def test_performance_scores_are_clamped():
    assert PerformanceSample(score=3.0).score == 1.0
    assert PerformanceSample(score=-7).score == -1.0
    assert PerformanceSample(score=float("nan")).score == 0.0


def test_history_averages_and_latest():
    template = _template("a", 0.0)
    assert template.average_score is None
    template.record(PerformanceSample(score=0.2))
    template.record(PerformanceSample(score=0.6))
    assert template.latest_score == pytest.approx(0.6)
    assert template.average_score == pytest.approx(0.4)
    assert len(template.performance_history) == 2


def test_from_dict_recomputes_stale_best_pointer():
    data = {
        "templates": [
            {"id": "a", "name": "A", "text": "x", "weight": 0.1},
            {"id": "b", "name": "B", "text": "y", "weight": 0.7},
        ],
        "domains": ["news"],
        "best_id": "a",
    }
    population = Population.from_dict(data)
    assert population.best_id == "b"


def test_ranked_is_stable_on_equal_weights():
    population = Population(
        templates=[_template("a", 0.5), _template("b", 0.9), _template("c", 0.5)]
    )
    assert [t.id for t in population.ranked()] == ["b", "a", "c"]
    assert population.max_generation == 0
