"""
Unit tests for the task queue and worker
Idempotent enqueue, retries with backoff and handler dispatch
"""
import json
import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from atlas.domain.models.task import DeferredTask, TaskStatus, TaskType
from atlas.domain.services.task_queue import TaskQueueService
from atlas.workers.task_worker import TaskWorker


@pytest.fixture
def redis_client():
    client = AsyncMock()
    client.set.return_value = True
    client.zrem.return_value = 1
    client.hdel.return_value = 1
    return client


@pytest.fixture
def task_queue(redis_client):
    return TaskQueueService(redis_client=redis_client)


class TestDeferredTask:
    """Tests for DeferredTask retry bookkeeping"""

    def test_retry_delay_doubles(self):
        task = DeferredTask(task_type=TaskType.PLACE_CALL)
        assert task.get_retry_delay() == 30
        task.attempt_number = 2
        assert task.get_retry_delay() == 60

    def test_retry_allowed_until_last_attempt(self):
        task = DeferredTask(task_type=TaskType.PLACE_CALL, attempt_number=2)
        assert task.should_retry()
        task.attempt_number = 3
        assert not task.should_retry()

    def test_redis_round_trip_keeps_payload(self):
        task = DeferredTask(task_type=TaskType.METER_CALL_USAGE, payload={"call_id": "call-1"}, idempotency_key="k")
        restored = DeferredTask.from_redis_dict(json.loads(json.dumps(task.to_redis_dict())))
        assert restored.task_type == "meter_call_usage"
        assert restored.payload == {"call_id": "call-1"}
        assert restored.idempotency_key == "k"


class TestTaskQueueService:
    """Tests for TaskQueueService against a mocked Redis client"""

    @pytest.mark.asyncio
    async def test_enqueue_pushes_task(self, task_queue, redis_client):
        queued = await task_queue.enqueue_task(TaskType.PLACE_CALL, {"call_id": "call-1"}, idempotency_key="place_call:call-1")

        assert queued is True
        redis_client.set.assert_awaited_once()
        assert redis_client.set.await_args.args[0] == "atlas:tasks:idem:place_call:call-1"
        assert redis_client.set.await_args.kwargs["nx"] is True
        key, data = redis_client.rpush.await_args.args
        assert key == "atlas:tasks:queue"
        assert json.loads(data)["payload"] == {"call_id": "call-1"}

    @pytest.mark.asyncio
    async def test_duplicate_idempotency_key_is_dropped(self, task_queue, redis_client):
        redis_client.set.return_value = None

        queued = await task_queue.enqueue_task(TaskType.PLACE_CALL, {"call_id": "call-1"}, idempotency_key="place_call:call-1")

        assert queued is False
        redis_client.rpush.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delayed_enqueue_is_scheduled(self, task_queue, redis_client):
        await task_queue.enqueue_task(TaskType.RUN_AUDIT, {"audit_job_id": "a"}, delay_seconds=60)

        key, mapping = redis_client.zadd.await_args.args
        assert key == "atlas:tasks:scheduled"
        assert list(mapping.values())[0] > time.time()
        redis_client.rpush.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_redis_failure_returns_false(self, task_queue, redis_client):
        redis_client.rpush.side_effect = ConnectionError("redis down")
        assert await task_queue.enqueue_task(TaskType.RUN_AUDIT, {"audit_job_id": "a"}) is False

    @pytest.mark.asyncio
    async def test_dequeue_tracks_in_flight(self, task_queue, redis_client):
        task = DeferredTask(task_type=TaskType.PLACE_CALL, payload={"call_id": "call-1"})
        redis_client.lpop.return_value = json.dumps(task.to_redis_dict())

        dequeued = await task_queue.dequeue()

        assert dequeued.task_id == task.task_id
        assert dequeued.status == TaskStatus.PROCESSING.value
        assert redis_client.hset.await_args.args[:2] == ("atlas:tasks:processing", task.task_id)

    @pytest.mark.asyncio
    async def test_schedule_retry_increments_attempt(self, task_queue, redis_client):
        task = DeferredTask(task_type=TaskType.PLACE_CALL, payload={"call_id": "call-1"})

        await task_queue.schedule_retry(task, "vapi error (500): upstream")

        assert task.attempt_number == 2
        assert task.last_error == "vapi error (500): upstream"
        redis_client.zadd.assert_awaited_once()
        redis_client.hdel.assert_awaited_once_with("atlas:tasks:processing", task.task_id)

    @pytest.mark.asyncio
    async def test_due_scheduled_tasks_move_to_queue(self, task_queue, redis_client):
        task = DeferredTask(task_type=TaskType.RUN_AUDIT, payload={"audit_job_id": "a"})
        redis_client.zrangebyscore.return_value = [json.dumps(task.to_redis_dict())]

        assert await task_queue.process_scheduled_tasks() == 1
        redis_client.rpush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stale_in_flight_tasks_are_requeued(self, task_queue, redis_client):
        task = DeferredTask(task_type=TaskType.RUN_AUDIT, payload={"audit_job_id": "a"})
        redis_client.hgetall.return_value = {
            task.task_id: json.dumps({"task": task.to_redis_dict(), "dequeued_at": time.time() - 3600}),
            "fresh": json.dumps({"task": task.to_redis_dict(), "dequeued_at": time.time()}),
        }

        assert await task_queue.requeue_stale(900) == 1


class TestTaskWorker:
    """Tests for TaskWorker.process_task"""

    @pytest.fixture
    def container(self):
        container = MagicMock()
        container.calls.place_call = AsyncMock()
        container.metering.meter_call_usage = AsyncMock()
        container.workflow.run = AsyncMock()
        container.workflow.resume = AsyncMock()
        return container

    @pytest.fixture
    def worker_queue(self):
        queue = MagicMock()
        for name in ("mark_completed", "mark_failed", "schedule_retry"):
            setattr(queue, name, AsyncMock())
        return queue

    @pytest.mark.asyncio
    async def test_success_marks_completed(self, container, worker_queue):
        worker = TaskWorker(container=container, queue=worker_queue)
        task = DeferredTask(task_type=TaskType.METER_CALL_USAGE, payload={"call_id": "call-1"})

        assert await worker.process_task(task) is True

        container.metering.meter_call_usage.assert_awaited_once_with("call-1")
        worker_queue.mark_completed.assert_awaited_once_with(task.task_id)

    @pytest.mark.asyncio
    async def test_failure_schedules_retry(self, container, worker_queue):
        container.calls.place_call.side_effect = RuntimeError("vapi timeout")
        worker = TaskWorker(container=container, queue=worker_queue)
        task = DeferredTask(task_type=TaskType.PLACE_CALL, payload={"call_id": "call-1"})

        assert await worker.process_task(task) is False

        container.calls.place_call.assert_awaited_once_with("call-1", final_attempt=False)
        worker_queue.schedule_retry.assert_awaited_once_with(task, "vapi timeout")
        worker_queue.mark_failed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_last_attempt_marks_failed(self, container, worker_queue):
        container.calls.place_call.side_effect = RuntimeError("vapi timeout")
        worker = TaskWorker(container=container, queue=worker_queue)
        task = DeferredTask(task_type=TaskType.PLACE_CALL, payload={"call_id": "call-1"}, attempt_number=3)

        await worker.process_task(task)

        container.calls.place_call.assert_awaited_once_with("call-1", final_attempt=True)
        worker_queue.mark_failed.assert_awaited_once()
        worker_queue.schedule_retry.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_resume_payload_resumes_flow(self, container, worker_queue):
        worker = TaskWorker(container=container, queue=worker_queue)

        await worker.process_task(DeferredTask(task_type=TaskType.RUN_LEAD_GEN_FLOW, payload={"flow_id": "f", "resume": True}))
        await worker.process_task(DeferredTask(task_type=TaskType.RUN_LEAD_GEN_FLOW, payload={"flow_id": "f"}))

        container.workflow.resume.assert_awaited_once_with("f")
        container.workflow.run.assert_awaited_once_with("f")
