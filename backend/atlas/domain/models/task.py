"""
Deferred Task Model
A unit of background work delivered through the Redis task queue
"""
import uuid
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
from datetime import datetime
from enum import Enum


class TaskType(str, Enum):
    """Background work the worker knows how to run"""
    PLACE_CALL = "place_call"
    SEND_BOOKING_CONFIRMATION = "send_booking_confirmation"
    METER_CALL_USAGE = "meter_call_usage"
    ANALYZE_CALL_TRANSCRIPT = "analyze_call_transcript"
    RUN_LEAD_GEN_FLOW = "run_lead_gen_flow"
    RUN_AUDIT = "run_audit"


class TaskStatus(str, Enum):
    """Status of a deferred task"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRY_SCHEDULED = "retry_scheduled"


# Module-level constants for retry logic
RETRY_BASE_DELAY_SECONDS = 30
MAX_ATTEMPTS = 3


class DeferredTask(BaseModel):
    """
    A deferred task.

    Delivery is at-least-once: handlers must be idempotent. The
    idempotency key lets the queue drop duplicate enqueues of the same
    logical task.
    """

    # Identity
    task_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    task_type: TaskType
    payload: Dict[str, Any] = Field(default_factory=dict)
    idempotency_key: Optional[str] = None

    # Status tracking
    status: TaskStatus = Field(default=TaskStatus.PENDING)
    attempt_number: int = Field(default=1, ge=1, description="Current attempt (1-based)")
    max_attempts: int = Field(default=MAX_ATTEMPTS, ge=1)

    # Timing
    scheduled_at: datetime = Field(default_factory=datetime.utcnow)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Result tracking
    last_error: Optional[str] = None

    # Pydantic V2 configuration
    model_config = {"use_enum_values": True}

    def should_retry(self) -> bool:
        """Whether another attempt is allowed after a failure."""
        return self.attempt_number < self.max_attempts

    def get_retry_delay(self) -> int:
        """Exponential delay before the next attempt."""
        return RETRY_BASE_DELAY_SECONDS * (2 ** (self.attempt_number - 1))

    def to_redis_dict(self) -> dict:
        """Serialize for Redis storage."""
        return {
            "task_id": self.task_id,
            "task_type": self.task_type,
            "payload": self.payload,
            "idempotency_key": self.idempotency_key,
            "status": self.status,
            "attempt_number": self.attempt_number,
            "max_attempts": self.max_attempts,
            "scheduled_at": self.scheduled_at.isoformat() if self.scheduled_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_error": self.last_error,
        }

    @classmethod
    def from_redis_dict(cls, data: dict) -> "DeferredTask":
        """Deserialize from Redis storage."""
        for dt_field in ["scheduled_at", "created_at"]:
            if data.get(dt_field) and isinstance(data[dt_field], str):
                data[dt_field] = datetime.fromisoformat(data[dt_field])

        return cls(**data)

    def __repr__(self) -> str:
        return (
            f"DeferredTask(id={self.task_id[:8]}..., "
            f"type={self.task_type}, "
            f"attempt={self.attempt_number}/{self.max_attempts})"
        )
