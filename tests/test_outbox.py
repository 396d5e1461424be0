"""Tests for the outbox queue and its retry policy."""

import pytest

from focusgrid.local.outbox import RetryPolicy
from focusgrid.sync.remote import RemoteStoreError


class TestEnqueueAndDrain:
    """Ordering and snapshot semantics."""

    def test_enqueued_at_strictly_increases(self, local_store, make_task, test_user_id):
        for i in range(5):
            local_store.put(make_task(title=f"task {i}"))

        pending = local_store.outbox.drain_batch(test_user_id)
        stamps = [op.enqueued_at for op in pending]
        assert stamps == sorted(stamps)
        assert len(set(stamps)) == len(stamps)
        assert [op.payload["title"] for op in pending] == [f"task {i}" for i in range(5)]

    def test_drain_respects_limit(self, local_store, make_task, test_user_id):
        for i in range(4):
            local_store.put(make_task(title=f"task {i}"))

        batch = local_store.outbox.drain_batch(test_user_id, limit=2)
        assert [op.payload["title"] for op in batch] == ["task 0", "task 1"]

    def test_drain_is_owner_scoped(self, local_store, make_task, test_user_id, other_user_id):
        local_store.put(make_task(user_id=other_user_id))
        assert local_store.outbox.drain_batch(test_user_id) == []
        assert len(local_store.outbox.drain_batch(other_user_id)) == 1

    def test_payload_is_a_snapshot(self, local_store, make_task, test_user_id):
        task = local_store.put(make_task(title="before"))
        local_store.put(task.model_copy(update={"title": "after"}), enqueue=False)

        pending = local_store.outbox.drain_batch(test_user_id)
        assert pending[0].payload["title"] == "before"

    def test_enqueue_delete(self, local_store, test_user_id):
        operation = local_store.outbox.enqueue_delete(test_user_id, "task-1")
        assert operation.type == "delete_task"
        assert operation.payload == {"id": "task-1"}
        assert local_store.outbox.pending_count(test_user_id) == 1

    def test_mark_processed_removes(self, local_store, make_task, test_user_id):
        local_store.put(make_task())
        operation = local_store.outbox.drain_batch(test_user_id)[0]

        assert local_store.outbox.mark_processed(operation.id) is True
        assert local_store.outbox.mark_processed(operation.id) is False
        assert local_store.outbox.pending_count(test_user_id) == 0


class TestFailures:
    """Retry bookkeeping and dead letters."""

    def test_record_failure_keeps_operation_at_head(self, local_store, make_task, test_user_id):
        local_store.put(make_task(title="first"))
        local_store.put(make_task(title="second"))
        head = local_store.outbox.drain_batch(test_user_id)[0]

        dead = local_store.outbox.record_failure(head.id, RemoteStoreError("offline"))

        assert dead is False
        pending = local_store.outbox.drain_batch(test_user_id)
        assert pending[0].id == head.id
        assert pending[0].retry_count == 1
        assert "offline" in pending[0].last_error

    def test_dead_letter_after_max_retries(self, make_local_store, make_task, test_user_id):
        store = make_local_store(RetryPolicy(max_retries=2))
        store.put(make_task(title="doomed"))
        store.put(make_task(title="next"))
        doomed = store.outbox.drain_batch(test_user_id)[0]

        assert store.outbox.record_failure(doomed.id, RuntimeError("boom")) is False
        assert store.outbox.record_failure(doomed.id, RuntimeError("boom")) is True

        pending = store.outbox.drain_batch(test_user_id)
        assert [op.payload["title"] for op in pending] == ["next"]
        dead_letters = store.outbox.list_dead_letters(test_user_id)
        assert [d.id for d in dead_letters] == [doomed.id]
        assert dead_letters[0].retry_count == 2
        assert dead_letters[0].failed_at is not None

    def test_requeue_dead_letter_goes_to_tail(self, make_local_store, make_task, test_user_id):
        store = make_local_store(RetryPolicy(max_retries=1))
        store.put(make_task(title="doomed"))
        store.put(make_task(title="next"))
        doomed = store.outbox.drain_batch(test_user_id)[0]
        store.outbox.record_failure(doomed.id)

        requeued = store.outbox.requeue_dead_letter(doomed.id)

        assert requeued is not None
        assert requeued.retry_count == 0
        pending = store.outbox.drain_batch(test_user_id)
        assert [op.payload["title"] for op in pending] == ["next", "doomed"]
        assert store.outbox.list_dead_letters(test_user_id) == []
        assert store.outbox.requeue_dead_letter(doomed.id) is None

    def test_unbounded_policy_never_dead_letters(self, make_local_store, make_task, test_user_id):
        store = make_local_store(RetryPolicy(max_retries=None))
        store.put(make_task())
        operation = store.outbox.drain_batch(test_user_id)[0]

        for _ in range(20):
            assert store.outbox.record_failure(operation.id) is False
        assert store.outbox.get(operation.id).retry_count == 20


class TestRetryPolicy:
    """Policy construction."""

    def test_default_is_bounded(self):
        assert RetryPolicy().max_retries == 8

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("OUTBOX_MAX_RETRIES", "3")
        assert RetryPolicy.from_env().max_retries == 3

        monkeypatch.setenv("OUTBOX_MAX_RETRIES", "unbounded")
        assert RetryPolicy.from_env().max_retries is None

    def test_rejects_non_positive(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_retries=0)
