"""
Phase Tracker
Persists lead-gen phase and flow status changes through the state machines
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import pytz

from atlas.core.exceptions import InvalidTransitionError, NotFoundError
from atlas.domain.interfaces.store import Store
from atlas.domain.models.lead_gen_flow import (
    PHASE_ORDER,
    BillingBlock,
    FlowStatus,
    LastEvent,
    LeadGenFlow,
    PhaseName,
    PhaseStatus,
    transition_flow,
    transition_phase,
)

logger = logging.getLogger(__name__)


class PhaseTracker:
    """
    Writes phase/flow state for a lead-gen flow.

    Every change loads the flow, applies the transition tables and writes
    a single patch, so a flow row never holds a half-applied change.
    """

    def __init__(self, store: Store):
        self.store = store

    async def load(self, flow_id: str) -> LeadGenFlow:
        flow = await self.store.get_flow(flow_id)
        if not flow:
            raise NotFoundError(f"Lead-gen flow {flow_id} not found")
        return flow

    def _check_order(self, flow: LeadGenFlow, phase: PhaseName) -> None:
        for earlier in PHASE_ORDER[:PHASE_ORDER.index(phase)]:
            if flow.get_phase(earlier).status != PhaseStatus.COMPLETE.value:
                raise InvalidTransitionError(
                    "phase",
                    f"{earlier.value}:{flow.get_phase(earlier).status}",
                    f"{phase.value}:started",
                )

    async def update_phase_status(
        self,
        flow_id: str,
        phase: PhaseName | str,
        status: PhaseStatus | str,
        progress: Optional[float] = None,
        error: Optional[str] = None,
        message: Optional[str] = None
    ) -> LeadGenFlow:
        """
        Move a phase to ``status`` and persist it.

        Raises:
            InvalidTransitionError: Disallowed phase move, or the phase
                would start before every earlier phase is complete
        """
        flow = await self.load(flow_id)
        phase = PhaseName(phase)
        status = PhaseStatus(status)
        record = flow.get_phase(phase)

        transition_phase(record.status, status)
        if status in (PhaseStatus.RUNNING, PhaseStatus.COMPLETE):
            self._check_order(flow, phase)

        now = datetime.now(pytz.UTC)
        if status == PhaseStatus.RUNNING and record.started_at is None:
            record.started_at = now
        if status == PhaseStatus.COMPLETE:
            progress = 1.0 if progress is None else progress
            if record.completed_at is None:
                record.completed_at = now
                if record.started_at:
                    record.duration_ms = int((now - record.started_at).total_seconds() * 1000)
        if progress is not None:
            record.progress = max(0.0, min(1.0, float(progress)))
        if error:
            record.error_message = error
        record.status = status.value

        fields: Dict[str, Any] = {
            "phases": flow.phases,
            "last_event": LastEvent(
                type=f"leadgen.{phase.value}.{status.value}",
                message=message or f"{phase.value} {status.value}",
                timestamp=now,
            ),
            "updated_at": now,
        }
        if status == PhaseStatus.RUNNING and flow.status == FlowStatus.IDLE.value:
            fields["status"] = transition_flow(flow.status, FlowStatus.RUNNING)

        await self.store.update_flow(flow_id, fields)
        return flow.model_copy(update=fields)

    async def set_progress(self, flow_id: str, phase: PhaseName | str, progress: float) -> LeadGenFlow:
        return await self.update_phase_status(flow_id, phase, PhaseStatus.RUNNING, progress=progress)

    async def record_flow_error(self, flow_id: str, phase: PhaseName | str, error: Exception | str) -> None:
        """Mark the phase and the flow as failed with ``Error in <phase>: <error>``."""
        phase = PhaseName(phase)
        message = f"Error in {phase.value}: {error}"
        flow = await self.load(flow_id)

        now = datetime.now(pytz.UTC)
        record = flow.get_phase(phase)
        if record.status != PhaseStatus.COMPLETE.value:
            record.status = PhaseStatus.ERROR.value
            record.error_message = str(error)

        await self.store.update_flow(flow_id, {
            "status": FlowStatus.ERROR,
            "error": message,
            "phases": flow.phases,
            "last_event": LastEvent(type=f"leadgen.{phase.value}.error", message=message, timestamp=now),
            "updated_at": now,
        })
        logger.error(f"Flow {flow_id} failed: {message}")

    async def complete_flow(self, flow_id: str) -> None:
        flow = await self.load(flow_id)
        transition_flow(flow.status, FlowStatus.COMPLETED)

        now = datetime.now(pytz.UTC)
        for record in flow.phases:
            if record.status == PhaseStatus.ERROR.value:
                continue
            record.status = PhaseStatus.COMPLETE.value
            record.progress = 1.0
            if record.completed_at is None:
                record.completed_at = now

        await self.store.update_flow(flow_id, {
            "status": FlowStatus.COMPLETED,
            "phases": flow.phases,
            "last_event": LastEvent(type="leadgen.flow.completed", message="Lead generation complete", timestamp=now),
            "updated_at": now,
        })
        logger.info(f"Flow {flow_id} completed")

    async def pause_for_billing(
        self,
        flow_id: str,
        phase: PhaseName | str,
        feature_id: str,
        check: Optional[Dict[str, Any]] = None
    ) -> None:
        """Attach the billing block and pause the flow in one patch."""
        phase = PhaseName(phase)
        flow = await self.load(flow_id)
        transition_flow(flow.status, FlowStatus.PAUSED_FOR_UPGRADE)

        now = datetime.now(pytz.UTC)
        await self.store.update_flow(flow_id, {
            "status": FlowStatus.PAUSED_FOR_UPGRADE,
            "billing_block": BillingBlock(phase=phase, feature_id=feature_id, credit_check=check or {}, created_at=now),
            "last_event": LastEvent(
                type=f"leadgen.{phase.value}.paused_for_upgrade",
                message=f"Insufficient credits for {feature_id}",
                timestamp=now,
            ),
            "updated_at": now,
        })
        logger.warning(f"Flow {flow_id} paused at {phase.value}: insufficient {feature_id} credits")

    async def clear_billing_block(self, flow_id: str) -> LeadGenFlow:
        """Remove the billing block and set the flow running in one patch."""
        flow = await self.load(flow_id)
        status = transition_flow(flow.status, FlowStatus.RUNNING)

        now = datetime.now(pytz.UTC)
        fields = {
            "status": status,
            "billing_block": None,
            "last_event": LastEvent(type="leadgen.flow.resumed", message="Flow resumed", timestamp=now),
            "updated_at": now,
        }
        await self.store.update_flow(flow_id, fields)
        return flow.model_copy(update=fields)
