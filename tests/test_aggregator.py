import pytest

from promptreels.core.aggregator import Aggregator
from promptreels.core.evaluator import Evaluator
from promptreels.core.samples import Sample
from promptreels.core.tracking import EventLog
from promptreels.database import build_seed_population


class _CountingBackend:
    name = "fake"

    def __init__(self):
        self.calls = []

    def describe(self, media_path, instruction):
        self.calls.append((media_path, instruction))
        return f"description of {media_path}"

    def synthesize(self, prompt, temperature=0.7, system_msg=""):
        return ""


def _samples(domains):
    return {d: Sample(media_path=f"/frames/{d}.jpg", reference_text=f"{d} ref") for d in domains}


def test_all_zero_scores_reset_weights_and_pick_first_template():
    population = build_seed_population()
    for weight, template in zip([0.8, 0.7, 0.6, 0.5, 0.4], population.templates):
        template.weight = weight
    backend = _CountingBackend()
    aggregator = Aggregator(Evaluator(backend, similarity=lambda a, b: 0.0))

    aggregator.evaluate_generation(population, _samples(population.domains))

    assert [t.weight for t in population.templates] == [0.0] * 5
    assert population.best_id == "baseline"
    assert len(backend.calls) == len(population.domains) * len(population.templates)


def test_weight_is_mean_of_current_pass_not_history():
    population = build_seed_population(domains=["news", "sports"])
    scores = {"/frames/news.jpg": 0.2, "/frames/sports.jpg": 0.6}

    def similarity(description, reference):
        return scores[description.replace("description of ", "")]

    aggregator = Aggregator(Evaluator(_CountingBackend(), similarity=similarity))
    aggregator.evaluate_generation(population, _samples(population.domains))
    scores.update({"/frames/news.jpg": 1.0, "/frames/sports.jpg": 0.0})
    aggregator.evaluate_generation(population, _samples(population.domains))

    template = population.get("baseline")
    assert template.weight == pytest.approx(0.5)
    assert len(template.performance_history) == 4
    assert template.average_score == pytest.approx(0.45)


def test_missing_domain_sample_is_skipped():
    population = build_seed_population()
    backend = _CountingBackend()
    aggregator = Aggregator(Evaluator(backend, similarity=lambda a, b: 0.4))

    aggregator.evaluate_generation(population, _samples(["news"]))

    assert len(backend.calls) == len(population.templates)
    assert all(len(t.performance_history) == 1 for t in population.templates)
    assert all(t.weight == pytest.approx(0.4) for t in population.templates)


def test_no_samples_keeps_weights_and_history():
    population = build_seed_population()
    population.templates[3].weight = 2.0
    Aggregator(Evaluator(_CountingBackend())).evaluate_generation(population, {})
    assert population.best_id == "technical"
    assert all(t.performance_history == [] for t in population.templates)


def test_evaluations_are_logged(tmp_path):
    log = EventLog(tmp_path / "events.jsonl")
    population = build_seed_population(domains=["news"])
    aggregator = Aggregator(Evaluator(_CountingBackend()), event_log=log)
    aggregator.evaluate_generation(population, _samples(["news"]))

    events = log.read()
    assert [e["event"] for e in events] == ["prompt_evaluation"] * 5
    assert events[0]["prompt_id"] == "baseline"
    assert events[0]["domain"] == "news"
