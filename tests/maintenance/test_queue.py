"""Tests for the SQLite work queue."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

from ExtRegistry.Maintenance.orchestrator.models import JobState


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TestEnqueue:
    def test_duplicate_id_is_ignored(self, queue):
        assert queue.enqueue("job-1", "remove_file", {"a": 1}) is True
        assert queue.enqueue("job-1", "remove_file", {"a": 2}) is False

        job = queue.get("job-1")
        assert job["state"] == JobState.QUEUED.value
        assert job["payload_json"] == '{"a": 1}'
        assert queue.stats()["total"] == 1

    def test_future_job_is_not_ready(self, queue):
        queue.enqueue("later", "remove_file", {}, not_before=_now() + timedelta(hours=1))
        assert queue.ready_count() == 0
        assert queue.lease("w1", limit=5, lease_ttl_sec=60) == []


class TestLease:
    def test_lease_is_exclusive(self, queue):
        for i in range(3):
            queue.enqueue(f"job-{i}", "remove_file", {})

        first = queue.lease("w1", limit=2, lease_ttl_sec=60)
        second = queue.lease("w2", limit=5, lease_ttl_sec=60)

        assert len(first) == 2
        assert len(second) == 1
        assert {j["job_id"] for j in first}.isdisjoint(j["job_id"] for j in second)
        assert queue.stats()[JobState.IN_PROGRESS.value] == 3

    def test_expired_lease_can_be_taken_over(self, queue):
        queue.enqueue("job-1", "remove_file", {})
        queue.lease("w1", limit=1, lease_ttl_sec=-1)

        taken = queue.lease("w2", limit=1, lease_ttl_sec=60)
        assert [j["job_id"] for j in taken] == ["job-1"]
        assert queue.get("job-1")["worker_id"] == "w2"

    def test_concurrent_leases_never_share_jobs(self, queue):
        for i in range(20):
            queue.enqueue(f"job-{i}", "remove_file", {})
        leased = []
        lock = threading.Lock()

        def grab(worker_id):
            while True:
                jobs = queue.lease(worker_id, limit=1, lease_ttl_sec=60)
                if not jobs:
                    break
                with lock:
                    leased.extend(j["job_id"] for j in jobs)

        threads = [threading.Thread(target=grab, args=(f"w{i}",)) for i in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(leased) == sorted(f"job-{i}" for i in range(20))


class TestRetry:
    def test_retry_bound_ends_in_error(self, queue):
        queue.enqueue("job-1", "remove_file", {}, max_retries=2)

        states = []
        for _ in range(3):
            queue.lease("w1", limit=1, lease_ttl_sec=60)
            states.append(queue.fail_and_retry("job-1", backoff_sec=0, last_error="OSError: boom"))

        assert states == [JobState.QUEUED, JobState.QUEUED, JobState.ERROR]
        job = queue.get("job-1")
        assert job["retry_count"] == 3
        assert job["last_error"] == "OSError: boom"

    def test_backoff_defers_the_job(self, queue):
        queue.enqueue("job-1", "remove_file", {})
        queue.lease("w1", limit=1, lease_ttl_sec=60)
        queue.fail_and_retry("job-1", backoff_sec=3600, last_error="x")
        assert queue.ready_count() == 0

    def test_retry_failed_rearms_with_fresh_budget(self, queue):
        queue.enqueue("job-1", "remove_file", {})
        queue.enqueue("job-2", "remove_file", {})
        queue.ack("job-1", "error", last_error="DataIntegrityError: gone")
        queue.ack("job-2", "done")

        assert queue.retry_failed() == 1
        job = queue.get("job-1")
        assert job["state"] == JobState.QUEUED.value
        assert job["retry_count"] == 0
        assert queue.retry("job-2") is False

    def test_retry_respects_rearm_limit(self, queue):
        queue.enqueue("job-1", "remove_file", {})

        queue.ack("job-1", "error", last_error="TransientIOError: timed out")
        assert queue.retry("job-1", max_rearms=1) is True
        queue.ack("job-1", "error", last_error="TransientIOError: timed out")
        assert queue.retry("job-1", max_rearms=1) is False

        job = queue.get("job-1")
        assert job["state"] == JobState.ERROR.value
        assert job["rearm_count"] == 1


class TestRecurring:
    def test_upsert_replaces_schedule(self, queue):
        first = _now() + timedelta(hours=1)
        queue.upsert_recurring("Daily", "admin_statistics", {}, "0 3 * * *", "k1", first)
        queue.upsert_recurring("Daily", "admin_statistics", {}, "0 4 * * *", "k2", first)

        rows = queue.list_recurring()
        assert len(rows) == 1
        assert rows[0]["cron"] == "0 4 * * *"
        assert queue.due_recurring() == []
        assert [r["name"] for r in queue.due_recurring(first)] == ["Daily"]

        assert queue.delete_recurring("Daily") is True
        assert queue.delete_recurring("Daily") is False


def test_stats_counts_every_state(queue):
    queue.enqueue("a", "remove_file", {})
    queue.enqueue("b", "remove_file", {})
    queue.ack("b", "done")

    stats = queue.stats()
    assert stats == {"queued": 1, "in_progress": 0, "done": 1, "error": 0, "total": 2}
