import time

import pytest

from promptreels.database import DocumentStore, StorageConfig
from promptreels.errors import InvalidConfiguration
from promptreels.launch.queue import DONE, FAILED, JobQueue, QueueConfig


def _queue(tmp_path, clock=time.time, **config) -> JobQueue:
    documents = DocumentStore(StorageConfig(data_dir=str(tmp_path), retry_delay_s=0.0))
    return JobQueue(documents, QueueConfig(**config), clock=clock)


def _later(seconds):
    return lambda: time.time() + seconds


def test_enqueue_reports_positions_and_is_idempotent(tmp_path):
    queue = _queue(tmp_path)
    assert queue.enqueue("fpo", {"id": "job-1"}) == 1
    assert queue.enqueue("fpo", {"id": "job-2"}) == 2
    assert queue.enqueue("fpo", {"id": "job-1", "iterations": 9}) == 1
    assert queue.status("fpo")["queued_count"] == 2


def test_article_id_is_identity_and_processing_item_reports_zero(tmp_path):
    queue = _queue(tmp_path)
    queue.enqueue("describe", {"article_id": "art-7"})
    item = queue.dequeue("describe")
    assert item.id == "art-7"
    assert queue.enqueue("describe", {"article_id": "art-7"}) == 0
    assert queue.status("describe")["queued_count"] == 0


def test_second_dequeue_without_complete_returns_none(tmp_path):
    queue = _queue(tmp_path)
    for n in range(3):
        queue.enqueue("fpo", {"id": f"job-{n}"})

    first = queue.dequeue("fpo")
    assert first.id == "job-0"
    assert first.status == "processing"
    assert first.started_at is not None
    assert queue.dequeue("fpo") is None
    assert queue.status("fpo")["queued_count"] == 2


def test_categories_are_independent(tmp_path):
    queue = _queue(tmp_path)
    queue.enqueue("fpo", {"id": "a"})
    queue.enqueue("rate", {"id": "b"})
    assert queue.dequeue("fpo").id == "a"
    assert queue.dequeue("rate").id == "b"
    assert queue.dequeue("fetch") is None


def test_failed_item_is_retried_at_tail_then_dropped(tmp_path):
    queue = _queue(tmp_path)
    queue.enqueue("fpo", {"id": "flaky"})
    queue.enqueue("fpo", {"id": "steady"})

    processed = []
    outcomes = []
    while True:
        item = queue.dequeue("fpo")
        if item is None:
            break
        processed.append(item.id)
        outcomes.append(queue.complete("fpo", success=item.id != "flaky", result="boom"))

    assert processed == ["flaky", "steady", "flaky", "flaky"]
    assert processed.count("flaky") == 3
    assert outcomes[-1].status == FAILED
    assert outcomes[-1].attempts == 3
    assert outcomes[1].status == DONE
    assert queue.status("fpo") == {
        "category": "fpo",
        "processing": None,
        "queued_count": 0,
        "items": [],
    }


def test_complete_without_processing_is_noop(tmp_path):
    queue = _queue(tmp_path)
    assert queue.complete("fpo", success=False) is None


def test_status_is_read_only(tmp_path):
    queue = _queue(tmp_path)
    queue.enqueue("fpo", {"id": "a"})
    before = queue.status("all")
    queue.status("fpo")
    assert queue.status("all") == before
    assert set(before) == {"fetch", "describe", "rate", "fpo"}
    assert before["fpo"]["items"][0]["payload"] == {"id": "a"}


def test_queued_items_survive_restart_and_stale_processing_is_dropped(tmp_path):
    queue = _queue(tmp_path)
    queue.enqueue("fpo", {"id": "running"})
    queue.enqueue("fpo", {"id": "waiting"})
    queue.dequeue("fpo")

    restarted = _queue(tmp_path, clock=_later(3600))
    assert restarted.dequeue("fpo") is None
    assert restarted.recover() == {"fpo": ("running", "dropped")}

    status = restarted.status("fpo")
    assert status["processing"] is None
    assert [i["id"] for i in status["items"]] == ["waiting"]
    assert restarted.dequeue("fpo").id == "waiting"


def test_requeue_policy_puts_stale_item_back_at_head(tmp_path):
    queue = _queue(tmp_path, in_flight_policy="requeue")
    queue.enqueue("fpo", {"id": "running"})
    queue.enqueue("fpo", {"id": "waiting"})
    queue.dequeue("fpo")

    restarted = _queue(tmp_path, clock=_later(3600), in_flight_policy="requeue")
    assert restarted.recover() == {"fpo": ("running", "requeued")}
    item = restarted.dequeue("fpo")
    assert item.id == "running"
    assert item.attempts == 1


def test_clear_empties_category(tmp_path):
    queue = _queue(tmp_path)
    queue.enqueue("rate", {"id": "a"})
    queue.dequeue("rate")
    queue.enqueue("rate", {"id": "b"})
    queue.clear("rate")
    assert queue.status("rate")["queued_count"] == 0
    assert queue.status("rate")["processing"] is None


def test_unknown_category_and_bad_policy_are_rejected(tmp_path):
    queue = _queue(tmp_path)
    with pytest.raises(InvalidConfiguration):
        queue.enqueue("transcode", {"id": "x"})
    with pytest.raises(InvalidConfiguration):
        _queue(tmp_path, in_flight_policy="resume")


def test_items_without_identity_get_generated_ids(tmp_path):
    queue = _queue(tmp_path)
    queue.enqueue("fetch", {"url": "https://example.com/a"})
    queue.enqueue("fetch", {"url": "https://example.com/a"})
    ids = [i["id"] for i in queue.status("fetch")["items"]]
    assert len(ids) == 2
    assert len(set(ids)) == 2


def test_second_queue_leaves_live_processing_item_alone(tmp_path):
    running = _queue(tmp_path)
    running.enqueue("fpo", {"id": "a"})
    running.enqueue("fpo", {"id": "b"})
    assert running.dequeue("fpo").id == "a"

    newcomer = _queue(tmp_path)
    assert newcomer.recover() == {}
    assert newcomer.dequeue("fpo") is None

    processing = newcomer.status("fpo")["processing"]
    assert processing["id"] == "a"
    assert processing["owner"] == running.owner
    assert newcomer.owner != running.owner


def test_heartbeat_keeps_slot_live_until_it_lapses(tmp_path):
    now = [1000.0]
    running = _queue(tmp_path, clock=lambda: now[0], stale_after_s=60.0)
    running.enqueue("fpo", {"id": "a"})
    running.dequeue("fpo")

    now[0] += 50
    assert running.heartbeat("fpo", "a") is True
    now[0] += 50
    other = _queue(tmp_path, clock=lambda: now[0], stale_after_s=60.0)
    assert other.recover() == {}
    assert other.heartbeat("fpo", "a") is False

    now[0] += 61
    assert other.recover() == {"fpo": ("a", "dropped")}
    assert running.heartbeat("fpo", "a") is False


def test_force_recover_reclaims_fresh_slots(tmp_path):
    running = _queue(tmp_path)
    running.enqueue("rate", {"id": "art-9"})
    running.dequeue("rate")

    assert _queue(tmp_path).recover(force=True) == {"rate": ("art-9", "dropped")}
    assert running.status("rate")["processing"] is None


def test_complete_ignores_slot_held_by_another_item(tmp_path):
    queue = _queue(tmp_path)
    queue.enqueue("fpo", {"id": "b"})
    queue.dequeue("fpo")

    assert queue.complete("fpo", success=True, item_id="a") is None
    assert queue.status("fpo")["processing"]["id"] == "b"
    assert queue.complete("fpo", success=True, item_id="b").status == DONE


def test_stale_after_must_exceed_poll_interval(tmp_path):
    with pytest.raises(InvalidConfiguration):
        _queue(tmp_path, poll_interval_s=5.0, stale_after_s=5.0)
