"""Processing-stage state machine.

A stage row is created once per (signal, stage) and completed exactly
once, moving from ``in_progress`` to ``completed`` or ``failed``.
Pipeline status for a signal is derived from all of its rows.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

import numpy as np

from src.api_errors.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from src.monitoring.broadcaster import BroadcastSink
from src.monitoring.config import (
    DEFAULT_MONITORING_CONFIG,
    PROCESSING_STAGE_ORDER,
    MonitoringConfig,
    ProcessingStageType,
    StageStatus,
)
from src.monitoring.guards import store_operation
from src.monitoring.models import PipelineStatus, ProcessingStage, StageInput, utcnow
from src.store.base import DataStore

logger = logging.getLogger(__name__)


def _coerce_stage(value: Any) -> ProcessingStageType:
    try:
        return ProcessingStageType(value)
    except ValueError:
        raise ValidationError(f"Invalid processing stage: {value!r}", field="stage") from None


def _coerce_status(value: Any) -> StageStatus:
    try:
        return StageStatus(value)
    except ValueError:
        raise ValidationError(f"Invalid stage status: {value!r}", field="status") from None


def derive_pipeline_status(
    signal_id: str,
    stages: list[ProcessingStage],
    now: Optional[datetime] = None,
    default_stage_duration_ms: float = DEFAULT_MONITORING_CONFIG.default_stage_duration_ms,
) -> Optional[PipelineStatus]:
    """Aggregate a signal's stages (in arrival order) into one status.

    Any failed stage makes the pipeline failed; otherwise any open stage
    makes it in progress; otherwise it is completed at its last stage.
    """
    if not stages:
        return None

    failed = next((s for s in stages if s.status == StageStatus.FAILED), None)
    active = next((s for s in stages if s.status == StageStatus.IN_PROGRESS), None)
    if failed is not None:
        status, current = StageStatus.FAILED, failed.stage
    elif active is not None:
        status, current = StageStatus.IN_PROGRESS, active.stage
    else:
        status, current = StageStatus.COMPLETED, stages[-1].stage

    total = float(sum(s.duration for s in stages if s.duration))

    estimated = None
    if status == StageStatus.IN_PROGRESS:
        durations = [
            s.duration for s in stages
            if s.status == StageStatus.COMPLETED and s.duration and s.duration > 0
        ]
        avg = float(np.mean(durations)) if durations else default_stage_duration_ms
        remaining = max(0, len(PROCESSING_STAGE_ORDER) - len(stages))
        estimated = (now or utcnow()) + timedelta(milliseconds=remaining * avg)

    return PipelineStatus(
        signal_id=signal_id,
        stages=stages,
        current_stage=current,
        status=status,
        total_processing_time=total,
        estimated_completion=estimated,
    )


class StageTracker:
    """Records the lifecycle of named processing stages per signal."""

    def __init__(
        self,
        store: DataStore,
        broadcaster: Optional[BroadcastSink] = None,
        config: Optional[MonitoringConfig] = None,
    ) -> None:
        self._store = store
        self._broadcaster = broadcaster or BroadcastSink(enabled=False)
        self.config = config or DEFAULT_MONITORING_CONFIG

    async def start_processing_stage(self, data: StageInput) -> ProcessingStage:
        """Create the stage row for (signal, stage).

        Raises:
            ValidationError: malformed signal id, stage, status or metadata.
            ConflictError: a row already exists for this signal and stage.
        """
        if not isinstance(data.signal_id, str) or not data.signal_id.strip():
            raise ValidationError("Signal ID is required", field="signal_id")
        stage_type = _coerce_stage(data.stage)
        status = _coerce_status(data.status)
        if not isinstance(data.metadata, dict):
            raise ValidationError("Metadata must be an object", field="metadata")

        async with store_operation("start processing stage"):
            existing = await self._store.find_stage(data.signal_id, stage_type)
            if existing is not None:
                raise ConflictError(
                    f"Stage {stage_type.value} already exists for signal {data.signal_id}"
                )

            now = utcnow()
            stage = ProcessingStage(
                signal_id=data.signal_id,
                stage=stage_type,
                status=status,
                started_at=now,
                metadata=dict(data.metadata),
                error_message=data.error_message,
            )
            if status != StageStatus.IN_PROGRESS:
                stage.completed_at = now
                stage.duration = 0.0
            stage = await self._store.create_stage(stage)

        logger.debug("Stage %s started for %s", stage_type.value, data.signal_id,
                     extra={"stage": stage_type.value})
        self._broadcaster.stage_event(stage)
        return stage

    async def complete_processing_stage(
        self,
        stage_id: str,
        status: StageStatus,
        metadata: Optional[dict[str, Any]] = None,
        error_message: Optional[str] = None,
    ) -> ProcessingStage:
        """Close an open stage as completed or failed.

        Raises:
            NotFoundError: unknown stage id.
            InvalidStateError: the stage is already completed or failed.
        """
        status = _coerce_status(status)
        if status == StageStatus.IN_PROGRESS:
            raise ValidationError("Completion status must be completed or failed", field="status")
        if metadata is not None and not isinstance(metadata, dict):
            raise ValidationError("Metadata must be an object", field="metadata")

        async with store_operation("complete processing stage"):
            stage = await self._store.get_stage(stage_id)
            if stage is None:
                raise NotFoundError("ProcessingStage", stage_id)
            if stage.status != StageStatus.IN_PROGRESS:
                raise InvalidStateError(
                    f"Stage {stage_id} is already {stage.status.value}",
                    current_state=stage.status.value,
                )

            completed_at = utcnow()
            if completed_at < stage.started_at:
                completed_at = stage.started_at
            stage.completed_at = completed_at
            stage.duration = (completed_at - stage.started_at).total_seconds() * 1000
            stage.status = status
            if metadata:
                stage.metadata = {**stage.metadata, **metadata}
            if error_message is not None:
                stage.error_message = error_message
            stage = await self._store.update_stage(stage)

        log = logger.warning if status == StageStatus.FAILED else logger.debug
        log("Stage %s %s for %s in %.1fms", stage.stage.value, status.value, stage.signal_id,
            stage.duration, extra={"stage": stage.stage.value, "duration_ms": stage.duration})
        self._broadcaster.stage_event(stage)
        return stage

    async def get_processing_stages(self, signal_id: str) -> list[ProcessingStage]:
        """All stages for a signal, oldest first."""
        async with store_operation("get processing stages"):
            stages = await self._store.list_stages(signal_id)
        return sorted(stages, key=lambda s: s.started_at)

    async def get_active_processing_stages(self) -> list[ProcessingStage]:
        async with store_operation("get active processing stages"):
            return await self._store.list_stages_by_status(StageStatus.IN_PROGRESS)

    async def get_pipeline_status(self, signal_id: str) -> Optional[PipelineStatus]:
        """Derived status for a signal, or None if it has no stages."""
        stages = await self.get_processing_stages(signal_id)
        return derive_pipeline_status(
            signal_id, stages,
            default_stage_duration_ms=self.config.default_stage_duration_ms,
        )
