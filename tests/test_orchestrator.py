import pytest

from promptreels.core.aggregator import Aggregator
from promptreels.core.evaluator import Evaluator
from promptreels.core.evolution import EvolutionEngine
from promptreels.core.orchestrator import FPOConfig, FPOOrchestrator, should_evolve
from promptreels.core.samples import Sample, StaticSampleSource
from promptreels.core.tracking import EventLog
from promptreels.database import DocumentStore, PopulationStore, StorageConfig
from promptreels.errors import InvalidConfiguration, StorageUnavailable


class _FakeBackend:
    name = "fake"

    def __init__(self):
        self.synth_calls = 0

    def describe(self, media_path, instruction):
        return instruction

    def synthesize(self, prompt, temperature=0.7, system_msg=""):
        self.synth_calls += 1
        return f"Evolved instruction {self.synth_calls}"


class _FlakyPopulationStore(PopulationStore):
    def __init__(self, documents, fail_on_save: int):
        super().__init__(documents)
        self.saves = 0
        self.fail_on_save = fail_on_save

    def save(self, population):
        self.saves += 1
        if self.saves == self.fail_on_save:
            raise StorageUnavailable("disk full")
        super().save(population)


def _documents(tmp_path) -> DocumentStore:
    return DocumentStore(StorageConfig(data_dir=str(tmp_path), retry_delay_s=0.0))


def _orchestrator(store, backend, event_log=None, **config):
    return FPOOrchestrator(
        store,
        Aggregator(Evaluator(backend, similarity=lambda a, b: 0.5), event_log=event_log),
        EvolutionEngine(backend, event_log=event_log),
        config=FPOConfig(**config),
        event_log=event_log,
    )


def _source():
    return StaticSampleSource(
        {"default": Sample(media_path="/frames/a.jpg", reference_text="ref", reference="a1")}
    )


def test_should_evolve_schedule():
    assert [i for i in range(1, 9) if should_evolve(i, 2)] == [2, 4, 6, 8]
    assert [i for i in range(1, 5) if should_evolve(i, 1)] == [2, 3, 4]
    assert not any(should_evolve(i, 0) for i in range(1, 5))


def test_evolution_runs_exactly_at_iterations_two_and_four(tmp_path):
    backend = _FakeBackend()
    store = PopulationStore(_documents(tmp_path))
    summary = _orchestrator(store, backend).run_iterations(4, 2, _source())

    assert [r.evolved_count for r in summary.records] == [0, 1, 0, 1]
    assert backend.synth_calls == 2
    assert [r.iteration for r in summary.records] == [1, 2, 3, 4]
    assert summary.records[-1].population_size == 7
    assert summary.max_generation >= 1


def test_population_is_persisted_after_every_iteration(tmp_path):
    store = PopulationStore(_documents(tmp_path))
    summary = _orchestrator(store, _FakeBackend()).run_iterations(
        3, 2, _source(), enable_evolution=False
    )

    population = store.load()
    assert summary.final_best_id == population.best_id
    assert all(len(t.performance_history) == 9 for t in population.templates)
    assert summary.evolved_total == 0


def test_storage_failure_aborts_with_partial_summary(tmp_path):
    store = _FlakyPopulationStore(_documents(tmp_path), fail_on_save=3)
    store.load()
    store.saves = 0
    orchestrator = _orchestrator(store, _FakeBackend())

    with pytest.raises(StorageUnavailable) as exc_info:
        orchestrator.run_iterations(5, 2, _source())

    summary = exc_info.value.summary
    assert summary.aborted
    assert len(summary.records) == 2
    assert "disk full" in summary.error


def test_invalid_configuration_is_rejected_before_work(tmp_path):
    backend = _FakeBackend()
    store = PopulationStore(_documents(tmp_path))
    orchestrator = _orchestrator(store, backend)
    with pytest.raises(InvalidConfiguration):
        orchestrator.run_iterations(3, 0, _source())
    with pytest.raises(InvalidConfiguration):
        orchestrator.run_iterations(0, 2, _source())
    assert not store.exists()


def test_fpo_config_validation():
    FPOConfig().validate()
    with pytest.raises(InvalidConfiguration):
        FPOConfig(evolution_every=0).validate()
    with pytest.raises(InvalidConfiguration):
        FPOConfig(max_population=3).validate()
    FPOConfig(evolution_every=0, enable_evolution=False).validate()


def test_iterations_are_logged(tmp_path):
    log = EventLog(tmp_path / "events.jsonl")
    store = PopulationStore(_documents(tmp_path))
    _orchestrator(store, _FakeBackend(), event_log=log).run_iterations(2, 2, _source())

    events = [e["event"] for e in log.read()]
    assert events.count("fpo_iteration") == 2
    assert events.count("evolution") == 1
