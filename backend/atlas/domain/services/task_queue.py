"""
Task Queue Service
Redis-backed deferred task queue with delayed retries
"""
import json
import logging
import time
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import redis.asyncio as redis

from atlas.core.config import get_settings
from atlas.domain.models.task import DeferredTask, TaskStatus, TaskType

logger = logging.getLogger(__name__)


class TaskQueueService:
    """
    Redis-based deferred task queue.

    Delivery is at-least-once: a task stays in the processing hash until it
    is completed, failed or rescheduled, and tasks abandoned by a crashed
    worker are pushed back by ``requeue_stale``.

    Queue Keys:
    - atlas:tasks:queue - FIFO list of ready tasks
    - atlas:tasks:scheduled - Sorted set of delayed tasks (score = due time)
    - atlas:tasks:processing - Hash of task_id -> in-flight task
    - atlas:tasks:idem:{key} - Idempotency markers for enqueue dedup
    """

    QUEUE_KEY = "atlas:tasks:queue"
    SCHEDULED_ZSET = "atlas:tasks:scheduled"
    PROCESSING_HASH = "atlas:tasks:processing"
    IDEMPOTENCY_PREFIX = "atlas:tasks:idem:"
    STATS_KEY = "atlas:tasks:stats"

    IDEMPOTENCY_TTL_SECONDS = 7 * 24 * 3600

    def __init__(self, redis_client=None, redis_url: Optional[str] = None):
        """
        Args:
            redis_client: Optional pre-configured Redis client
            redis_url: Connection URL used when no client is given
        """
        self._redis = redis_client
        self._redis_url = redis_url
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize Redis connection if not provided."""
        if self._redis is not None:
            self._initialized = True
            return

        redis_url = self._redis_url or get_settings().redis_url
        try:
            self._redis = redis.from_url(redis_url, encoding="utf-8", decode_responses=True)
            await self._redis.ping()
            self._initialized = True
            logger.info(f"TaskQueueService connected to Redis: {redis_url}")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise

    async def _ensure(self) -> None:
        if not self._initialized:
            await self.initialize()

    # ========================================
    # Enqueue
    # ========================================

    async def enqueue(self, task: DeferredTask, delay_seconds: float = 0) -> bool:
        """
        Enqueue a task, optionally delayed.

        Returns:
            True if enqueued, False for a duplicate idempotency key or a
            Redis failure
        """
        await self._ensure()

        try:
            if task.idempotency_key:
                claimed = await self._redis.set(
                    f"{self.IDEMPOTENCY_PREFIX}{task.idempotency_key}",
                    task.task_id,
                    nx=True,
                    ex=self.IDEMPOTENCY_TTL_SECONDS,
                )
                if not claimed:
                    logger.info(f"Skipping duplicate task {task.task_type} ({task.idempotency_key})")
                    return False

            task_data = json.dumps(task.to_redis_dict())
            if delay_seconds > 0:
                await self._redis.zadd(self.SCHEDULED_ZSET, {task_data: time.time() + delay_seconds})
                logger.info(f"Scheduled {task!r} in {delay_seconds:.0f}s")
            else:
                await self._redis.rpush(self.QUEUE_KEY, task_data)
                logger.info(f"Enqueued {task!r}")

            await self._redis.hincrby(self.STATS_KEY, "total_enqueued", 1)
            return True

        except Exception as e:
            logger.error(f"Failed to enqueue task {task.task_id}: {e}")
            return False

    async def enqueue_task(
        self,
        task_type: TaskType,
        payload: Dict[str, Any],
        idempotency_key: Optional[str] = None,
        delay_seconds: float = 0
    ) -> bool:
        """Build and enqueue a DeferredTask."""
        task = DeferredTask(task_type=task_type, payload=payload, idempotency_key=idempotency_key)
        return await self.enqueue(task, delay_seconds)

    # ========================================
    # Dequeue and completion
    # ========================================

    async def dequeue(self) -> Optional[DeferredTask]:
        """Pop the next ready task and record it as in flight."""
        await self._ensure()

        try:
            task_data = await self._redis.lpop(self.QUEUE_KEY)
            if not task_data:
                return None

            task = DeferredTask.from_redis_dict(json.loads(task_data))
            task.status = TaskStatus.PROCESSING
            await self._redis.hset(
                self.PROCESSING_HASH,
                task.task_id,
                json.dumps({"task": task.to_redis_dict(), "dequeued_at": time.time()}),
            )
            await self._redis.hincrby(self.STATS_KEY, "total_dequeued", 1)
            return task

        except Exception as e:
            logger.error(f"Failed to dequeue task: {e}")
            return None

    async def mark_completed(self, task_id: str) -> None:
        await self._redis.hdel(self.PROCESSING_HASH, task_id)
        await self._redis.hincrby(self.STATS_KEY, "total_completed", 1)
        logger.debug(f"Task {task_id} completed")

    async def mark_failed(self, task_id: str, error: str) -> None:
        await self._redis.hdel(self.PROCESSING_HASH, task_id)
        await self._redis.hincrby(self.STATS_KEY, "total_failed", 1)
        logger.warning(f"Task {task_id} failed permanently: {error}")

    async def schedule_retry(self, task: DeferredTask, error: str) -> bool:
        """Reschedule a failed task after its exponential delay."""
        await self._ensure()

        try:
            delay_seconds = task.get_retry_delay()
            task.attempt_number += 1
            task.status = TaskStatus.RETRY_SCHEDULED
            task.last_error = error
            task.scheduled_at = datetime.utcnow() + timedelta(seconds=delay_seconds)

            await self._redis.zadd(
                self.SCHEDULED_ZSET,
                {json.dumps(task.to_redis_dict()): time.time() + delay_seconds},
            )
            await self._redis.hdel(self.PROCESSING_HASH, task.task_id)

            logger.info(
                f"Scheduled retry for task {task.task_id} "
                f"(attempt {task.attempt_number}/{task.max_attempts}) in {delay_seconds}s"
            )
            return True

        except Exception as e:
            logger.error(f"Failed to schedule retry for task {task.task_id}: {e}")
            return False

    # ========================================
    # Maintenance
    # ========================================

    async def process_scheduled_tasks(self) -> int:
        """
        Move due scheduled tasks onto the ready queue.

        Returns:
            Number of tasks moved
        """
        await self._ensure()

        try:
            due = await self._redis.zrangebyscore(self.SCHEDULED_ZSET, 0, time.time())

            count = 0
            for task_data in due:
                # Only the worker that removes the entry moves it
                if not await self._redis.zrem(self.SCHEDULED_ZSET, task_data):
                    continue
                task = DeferredTask.from_redis_dict(json.loads(task_data))
                task.status = TaskStatus.PENDING
                await self._redis.rpush(self.QUEUE_KEY, json.dumps(task.to_redis_dict()))
                count += 1

            if count > 0:
                logger.info(f"Moved {count} scheduled tasks to the queue")
            return count

        except Exception as e:
            logger.error(f"Failed to process scheduled tasks: {e}")
            return 0

    async def requeue_stale(self, max_age_seconds: float) -> int:
        """Push back tasks that have been in flight longer than ``max_age_seconds``."""
        await self._ensure()

        try:
            in_flight = await self._redis.hgetall(self.PROCESSING_HASH) or {}
            cutoff = time.time() - max_age_seconds

            count = 0
            for task_id, entry_data in in_flight.items():
                entry = json.loads(entry_data)
                if entry.get("dequeued_at", 0) > cutoff:
                    continue
                if not await self._redis.hdel(self.PROCESSING_HASH, task_id):
                    continue
                task = DeferredTask.from_redis_dict(entry["task"])
                task.status = TaskStatus.PENDING
                await self._redis.rpush(self.QUEUE_KEY, json.dumps(task.to_redis_dict()))
                count += 1

            if count > 0:
                logger.warning(f"Requeued {count} stale in-flight tasks")
            return count

        except Exception as e:
            logger.error(f"Failed to requeue stale tasks: {e}")
            return 0

    async def get_queue_stats(self) -> dict:
        await self._ensure()

        try:
            stats = await self._redis.hgetall(self.STATS_KEY) or {}
            return {
                "queue_length": await self._redis.llen(self.QUEUE_KEY),
                "scheduled_tasks": await self._redis.zcard(self.SCHEDULED_ZSET),
                "processing_tasks": await self._redis.hlen(self.PROCESSING_HASH),
                "total_enqueued": int(stats.get("total_enqueued", 0)),
                "total_dequeued": int(stats.get("total_dequeued", 0)),
                "total_completed": int(stats.get("total_completed", 0)),
                "total_failed": int(stats.get("total_failed", 0)),
            }

        except Exception as e:
            logger.error(f"Failed to get queue stats: {e}")
            return {}

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.close()
            self._initialized = False
