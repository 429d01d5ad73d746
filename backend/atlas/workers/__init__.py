"""
Workers Package
Background worker for deferred tasks
"""
from atlas.workers.task_worker import TaskWorker

__all__ = ["TaskWorker"]
