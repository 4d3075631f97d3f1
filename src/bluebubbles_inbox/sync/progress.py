"""Combines the background sync stages into one progress indicator."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..utils.published import Published

logger = logging.getLogger(__name__)


class SyncStage(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    CATEGORIZE = "categorize"


# Fixed weights. The overall value is the raw weighted sum, not
# renormalized over the stages that happen to be running.
STAGE_WEIGHTS = {
    SyncStage.PRIMARY: 0.60,
    SyncStage.SECONDARY: 0.25,
    SyncStage.CATEGORIZE: 0.15,
}

STAGE_LABELS = {
    SyncStage.PRIMARY: "Syncing messages",
    SyncStage.SECONDARY: "Importing SMS",
    SyncStage.CATEGORIZE: "Categorizing messages",
}

# Highest weight first
STAGE_ORDER = tuple(sorted(SyncStage, key=lambda s: -STAGE_WEIGHTS[s]))


class StageStatus(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True)
class StageState:
    """State of one stage as reported by the stage itself."""

    status: StageStatus = StageStatus.IDLE
    progress: float = 0.0
    processed: int | None = None
    total: int | None = None
    label: str | None = None
    message: str | None = None

    @classmethod
    def idle(cls) -> StageState:
        return cls()

    @classmethod
    def active(
        cls,
        progress: float,
        processed: int | None = None,
        total: int | None = None,
        label: str | None = None,
    ) -> StageState:
        return cls(StageStatus.ACTIVE, progress, processed, total, label)

    @classmethod
    def complete(cls) -> StageState:
        return cls(StageStatus.COMPLETE, 1.0)

    @classmethod
    def error(cls, message: str) -> StageState:
        return cls(StageStatus.ERROR, message=message)


@dataclass(frozen=True)
class StageProgress:
    """One line item in the expanded progress view."""

    stage: SyncStage
    label: str
    status: StageStatus
    progress: float
    weight: float
    processed: int | None = None
    total: int | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class SyncProgress:
    """The combined indicator. Absent (None) while every stage is idle."""

    overall_progress: float
    current_label: str
    has_error: bool
    error_stage: SyncStage | None
    error_message: str | None
    stages: tuple[StageProgress, ...]
    is_expanded: bool


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


class SyncProgressAggregator:
    """
    Merges the three stage states into one published `SyncProgress`.

    A Complete stage only counts as 1.0 if it was seen Active during the
    current cycle; a cycle ends when every stage is Idle again. An Error
    keeps the last progress reported by that stage, and stays flagged
    until it is dismissed, even if the stage moves on.
    """

    def __init__(self) -> None:
        self._states = {stage: StageState() for stage in SyncStage}
        self._last_progress = {stage: 0.0 for stage in SyncStage}
        self._contributed: set[SyncStage] = set()
        self._errors: dict[SyncStage, str] = {}
        self._expanded = False
        self._retry_handlers: dict[SyncStage, Callable[[], Any]] = {}
        self.progress: Published[SyncProgress | None] = Published(None)

    def state_of(self, stage: SyncStage) -> StageState:
        return self._states[stage]

    def update_stage(self, stage: SyncStage, state: StageState) -> None:
        """Record a new state for one stage and republish."""
        if state.status is StageStatus.ACTIVE:
            self._contributed.add(stage)
            self._last_progress[stage] = _clamp(state.progress)
        elif state.status is StageStatus.ERROR:
            message = state.message or f"{STAGE_LABELS[stage]} failed"
            self._errors[stage] = message
            logger.warning("Sync stage %s failed: %s", stage.value, message)

        self._states[stage] = state
        if all(s.status is StageStatus.IDLE for s in self._states.values()):
            self._contributed.clear()
            self._last_progress = {s: 0.0 for s in SyncStage}
        self._publish()

    def register_retry(self, stage: SyncStage, handler: Callable[[], Any]) -> None:
        self._retry_handlers[stage] = handler

    def dismiss_stage_error(self, stage: SyncStage) -> None:
        """Clear the error flag of a stage. A stage still in Error goes back to Idle."""
        self._errors.pop(stage, None)
        if self._states[stage].status is StageStatus.ERROR:
            self.update_stage(stage, StageState.idle())
        else:
            self._publish()

    def retry_failed_stage(self) -> SyncStage | None:
        """Dismiss the highest-weight failed stage and run its retry handler."""
        stage = next((s for s in STAGE_ORDER if s in self._errors), None)
        if stage is None:
            return None
        self.dismiss_stage_error(stage)
        handler = self._retry_handlers.get(stage)
        if handler is None:
            logger.warning("No retry handler for sync stage %s", stage.value)
        else:
            handler()
        return stage

    def toggle_expanded(self) -> None:
        self._expanded = not self._expanded
        self._publish()

    def overall_progress(self) -> float:
        total = 0.0
        for stage, state in self._states.items():
            total += STAGE_WEIGHTS[stage] * self._contribution(stage, state)
        return _clamp(total)

    def _contribution(self, stage: SyncStage, state: StageState) -> float:
        if state.status is StageStatus.ACTIVE:
            return _clamp(state.progress)
        if state.status is StageStatus.COMPLETE:
            return 1.0 if stage in self._contributed else 0.0
        if state.status is StageStatus.ERROR:
            return self._last_progress[stage]
        return 0.0

    def snapshot(self) -> SyncProgress | None:
        if all(s.status is StageStatus.IDLE for s in self._states.values()):
            return None

        error_stage = next((s for s in STAGE_ORDER if s in self._errors), None)
        active_stage = next(
            (s for s in STAGE_ORDER if self._states[s].status is StageStatus.ACTIVE), None
        )
        if error_stage is not None:
            label = self._errors[error_stage]
        elif active_stage is not None:
            label = self._states[active_stage].label or STAGE_LABELS[active_stage]
        else:
            label = "Sync complete"

        # Once anything runs, every stage is listed so the user sees what is pending
        stages = tuple(
            StageProgress(
                stage=stage,
                label=self._states[stage].label or STAGE_LABELS[stage],
                status=self._states[stage].status,
                progress=self._contribution(stage, self._states[stage]),
                weight=STAGE_WEIGHTS[stage],
                processed=self._states[stage].processed,
                total=self._states[stage].total,
                error_message=self._errors.get(stage),
            )
            for stage in STAGE_ORDER
        )

        return SyncProgress(
            overall_progress=self.overall_progress(),
            current_label=label,
            has_error=error_stage is not None,
            error_stage=error_stage,
            error_message=self._errors.get(error_stage) if error_stage else None,
            stages=stages,
            is_expanded=self._expanded,
        )

    def _publish(self) -> None:
        self.progress.publish(self.snapshot())
