"""
Task Worker
Background worker that runs deferred tasks from the Redis queue

Run as separate process:
    python -m atlas.workers.task_worker
"""
import asyncio
import logging
import os
import signal
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from dotenv import load_dotenv
from supabase import create_client

from atlas.core.config import ConfigManager
from atlas.domain.models.task import DeferredTask, TaskType
from atlas.domain.services.task_queue import TaskQueueService
from atlas.infrastructure.storage.blob_storage import SupabaseBlobStorage
from atlas.infrastructure.storage.supabase_store import SupabaseStore
from atlas.services.container import ServiceContainer

load_dotenv()

logger = logging.getLogger(__name__)

TaskHandler = Callable[[DeferredTask], Awaitable[Any]]


class TaskWorker:
    """
    Dequeues deferred tasks and dispatches them by type.

    Failed tasks are rescheduled with exponential backoff until their
    attempts run out. Handlers are idempotent, so redelivery after a crash
    is safe.
    """

    MAX_CONSECUTIVE_ERRORS = 10

    def __init__(
        self,
        container: Optional[ServiceContainer] = None,
        queue: Optional[TaskQueueService] = None,
        config: Optional[ConfigManager] = None
    ):
        config = config or ConfigManager()
        self.POLL_INTERVAL = float(config.get("worker.poll_interval_seconds", 1.0))
        self.SCHEDULED_CHECK_INTERVAL = float(config.get("worker.scheduled_check_interval_seconds", 5))
        self.STALE_TASK_SECONDS = float(config.get("worker.stale_task_seconds", 900))

        self.container = container
        self.queue = queue or (container.queue if container else TaskQueueService())
        self.running = False

        self._tasks_processed = 0
        self._tasks_failed = 0
        self._last_scheduled_check = datetime.utcnow()

        self._handlers: Dict[str, TaskHandler] = {
            TaskType.PLACE_CALL.value: self._place_call,
            TaskType.SEND_BOOKING_CONFIRMATION.value: self._send_booking_confirmation,
            TaskType.METER_CALL_USAGE.value: self._meter_call_usage,
            TaskType.ANALYZE_CALL_TRANSCRIPT.value: self._analyze_call_transcript,
            TaskType.RUN_LEAD_GEN_FLOW.value: self._run_lead_gen_flow,
            TaskType.RUN_AUDIT.value: self._run_audit,
        }

    async def initialize(self) -> None:
        """Connect to Redis and Supabase."""
        logger.info("Initializing Task Worker...")
        await self.queue.initialize()

        if self.container is None:
            supabase_url = os.getenv("SUPABASE_URL")
            supabase_key = os.getenv("SUPABASE_SERVICE_KEY")
            if not supabase_url or not supabase_key:
                raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")

            supabase = create_client(supabase_url, supabase_key)
            self.container = ServiceContainer(
                SupabaseStore(supabase),
                SupabaseBlobStorage(supabase),
                self.queue,
            )

        logger.info("Task Worker initialized successfully")

    async def run(self) -> None:
        """
        Main worker loop.

        Continuously:
        1. Move due scheduled retries onto the queue
        2. Dequeue and process tasks
        3. Back off on repeated errors
        """
        await self.initialize()

        self.running = True
        consecutive_errors = 0
        await self.queue.requeue_stale(self.STALE_TASK_SECONDS)

        logger.info("Task Worker started - listening for tasks")

        while self.running:
            try:
                if (datetime.utcnow() - self._last_scheduled_check).total_seconds() > self.SCHEDULED_CHECK_INTERVAL:
                    await self.queue.process_scheduled_tasks()
                    self._last_scheduled_check = datetime.utcnow()

                task = await self.queue.dequeue()
                if task:
                    await self.process_task(task)
                    consecutive_errors = 0
                else:
                    await asyncio.sleep(self.POLL_INTERVAL)

            except asyncio.CancelledError:
                logger.info("Worker received cancellation signal")
                break
            except Exception as e:
                consecutive_errors += 1
                logger.error(f"Worker error ({consecutive_errors}): {e}", exc_info=True)

                if consecutive_errors >= self.MAX_CONSECUTIVE_ERRORS:
                    logger.critical("Too many consecutive errors, stopping worker")
                    break

                await asyncio.sleep(min(5 * consecutive_errors, 60))

        await self.shutdown()

    async def process_task(self, task: DeferredTask) -> bool:
        """
        Run one task and settle it on the queue.

        Returns:
            True if the handler succeeded
        """
        handler = self._handlers.get(task.task_type)
        if handler is None:
            await self.queue.mark_failed(task.task_id, f"Unknown task type: {task.task_type}")
            self._tasks_failed += 1
            return False

        logger.info(f"Processing {task!r}")
        try:
            await handler(task)
        except Exception as e:
            logger.error(f"Task {task.task_id} ({task.task_type}) failed: {e}", exc_info=True)
            if task.should_retry():
                await self.queue.schedule_retry(task, str(e))
            else:
                await self.queue.mark_failed(task.task_id, str(e))
                self._tasks_failed += 1
            return False

        await self.queue.mark_completed(task.task_id)
        self._tasks_processed += 1
        return True

    # ========================================
    # Handlers
    # ========================================

    async def _place_call(self, task: DeferredTask) -> None:
        await self.container.calls.place_call(
            task.payload["call_id"], final_attempt=not task.should_retry()
        )

    async def _send_booking_confirmation(self, task: DeferredTask) -> None:
        await self.container.follow_ups.send_booking_confirmation(task.payload["meeting_id"])

    async def _meter_call_usage(self, task: DeferredTask) -> None:
        await self.container.metering.meter_call_usage(task.payload["call_id"])

    async def _analyze_call_transcript(self, task: DeferredTask) -> None:
        await self.container.analyzer.analyze_call_transcript(task.payload["call_id"])

    async def _run_lead_gen_flow(self, task: DeferredTask) -> None:
        flow_id = task.payload["flow_id"]
        if task.payload.get("resume"):
            await self.container.workflow.resume(flow_id)
        else:
            await self.container.workflow.run(flow_id)

    async def _run_audit(self, task: DeferredTask) -> None:
        await self.container.audits.run_audit(task.payload["audit_job_id"])

    async def shutdown(self) -> None:
        """Graceful shutdown."""
        logger.info("Shutting down Task Worker...")
        self.running = False
        await self.queue.close()
        logger.info(
            f"Task Worker shutdown complete. "
            f"Processed: {self._tasks_processed}, Failed: {self._tasks_failed}"
        )

    def get_stats(self) -> dict:
        return {
            "running": self.running,
            "tasks_processed": self._tasks_processed,
            "tasks_failed": self._tasks_failed,
        }


async def main():
    """Entry point for running the task worker as a separate process."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    worker = TaskWorker()

    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        worker.running = False

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    try:
        await worker.run()
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    finally:
        if worker.running:
            await worker.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
