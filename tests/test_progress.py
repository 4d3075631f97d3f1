"""Tests for the combined sync progress indicator."""

from unittest.mock import MagicMock

import pytest

from bluebubbles_inbox.sync.progress import (
    StageState,
    StageStatus,
    SyncProgress,
    SyncProgressAggregator,
    SyncStage,
)


def _snapshot(aggregator: SyncProgressAggregator) -> SyncProgress:
    progress = aggregator.progress.value
    assert progress is not None
    return progress


class TestOverallProgress:
    """Test the weighted sum."""

    def test_absent_while_everything_is_idle(self) -> None:
        aggregator = SyncProgressAggregator()
        assert aggregator.progress.value is None

        aggregator.update_stage(SyncStage.SECONDARY, StageState.idle())
        assert aggregator.progress.value is None

    def test_half_way_primary(self) -> None:
        aggregator = SyncProgressAggregator()
        aggregator.update_stage(SyncStage.PRIMARY, StageState.active(0.5))

        progress = _snapshot(aggregator)
        assert progress.overall_progress == pytest.approx(0.30)
        assert progress.current_label == "Syncing messages"
        assert progress.has_error is False

    def test_weights_add_up(self) -> None:
        aggregator = SyncProgressAggregator()
        for stage in SyncStage:
            aggregator.update_stage(stage, StageState.active(0.0))
        for stage in SyncStage:
            aggregator.update_stage(stage, StageState.complete())

        progress = _snapshot(aggregator)
        assert progress.overall_progress == pytest.approx(1.0)
        assert progress.current_label == "Sync complete"

    def test_complete_without_active_counts_nothing(self) -> None:
        aggregator = SyncProgressAggregator()
        aggregator.update_stage(SyncStage.CATEGORIZE, StageState.complete())

        assert _snapshot(aggregator).overall_progress == 0.0

    def test_cycle_resets_when_all_idle(self) -> None:
        aggregator = SyncProgressAggregator()
        aggregator.update_stage(SyncStage.PRIMARY, StageState.active(0.4))
        aggregator.update_stage(SyncStage.PRIMARY, StageState.complete())
        assert _snapshot(aggregator).overall_progress == pytest.approx(0.60)

        aggregator.update_stage(SyncStage.PRIMARY, StageState.idle())
        assert aggregator.progress.value is None

        aggregator.update_stage(SyncStage.PRIMARY, StageState.complete())
        assert _snapshot(aggregator).overall_progress == 0.0

    def test_progress_is_clamped(self) -> None:
        aggregator = SyncProgressAggregator()
        aggregator.update_stage(SyncStage.PRIMARY, StageState.active(1.7))

        assert _snapshot(aggregator).overall_progress == pytest.approx(0.60)

    def test_error_keeps_last_progress(self) -> None:
        aggregator = SyncProgressAggregator()
        aggregator.update_stage(SyncStage.PRIMARY, StageState.active(0.5))
        aggregator.update_stage(SyncStage.PRIMARY, StageState.error("server unreachable"))

        assert _snapshot(aggregator).overall_progress == pytest.approx(0.30)


class TestLabels:
    """Test which label is shown."""

    def test_highest_weight_active_stage_wins(self) -> None:
        aggregator = SyncProgressAggregator()
        aggregator.update_stage(SyncStage.CATEGORIZE, StageState.active(0.9))
        aggregator.update_stage(SyncStage.SECONDARY, StageState.active(0.5))
        assert _snapshot(aggregator).current_label == "Importing SMS"

        aggregator.update_stage(SyncStage.PRIMARY, StageState.active(0.1))
        assert _snapshot(aggregator).current_label == "Syncing messages"

    def test_stage_supplied_label(self) -> None:
        aggregator = SyncProgressAggregator()
        aggregator.update_stage(
            SyncStage.PRIMARY, StageState.active(0.2, processed=20, total=100, label="Fetching chats")
        )

        progress = _snapshot(aggregator)
        assert progress.current_label == "Fetching chats"
        primary = progress.stages[0]
        assert (primary.processed, primary.total) == (20, 100)

    def test_every_stage_is_listed(self) -> None:
        aggregator = SyncProgressAggregator()
        aggregator.update_stage(SyncStage.SECONDARY, StageState.active(0.5))

        stages = _snapshot(aggregator).stages
        assert [s.stage for s in stages] == [
            SyncStage.PRIMARY,
            SyncStage.SECONDARY,
            SyncStage.CATEGORIZE,
        ]
        assert [s.weight for s in stages] == [0.60, 0.25, 0.15]
        assert stages[0].status is StageStatus.IDLE
        assert stages[1].progress == 0.5

    def test_toggle_expanded(self) -> None:
        aggregator = SyncProgressAggregator()
        aggregator.update_stage(SyncStage.PRIMARY, StageState.active(0.1))
        assert _snapshot(aggregator).is_expanded is False

        aggregator.toggle_expanded()
        assert _snapshot(aggregator).is_expanded is True

        aggregator.toggle_expanded()
        assert _snapshot(aggregator).is_expanded is False


class TestStageErrors:
    """Test error display, dismissal and retry."""

    def test_error_overrides_label(self) -> None:
        aggregator = SyncProgressAggregator()
        aggregator.update_stage(SyncStage.SECONDARY, StageState.active(0.3))
        aggregator.update_stage(SyncStage.PRIMARY, StageState.error("server unreachable"))

        progress = _snapshot(aggregator)
        assert progress.has_error is True
        assert progress.error_stage is SyncStage.PRIMARY
        assert progress.error_message == "server unreachable"
        assert progress.current_label == "server unreachable"

    def test_error_without_message_gets_default(self) -> None:
        aggregator = SyncProgressAggregator()
        aggregator.update_stage(SyncStage.SECONDARY, StageState(StageStatus.ERROR))

        assert _snapshot(aggregator).error_message == "Importing SMS failed"

    def test_error_is_sticky_until_dismissed(self) -> None:
        aggregator = SyncProgressAggregator()
        aggregator.update_stage(SyncStage.PRIMARY, StageState.error("server unreachable"))
        aggregator.update_stage(SyncStage.PRIMARY, StageState.active(0.2))

        progress = _snapshot(aggregator)
        assert progress.has_error is True
        assert progress.current_label == "server unreachable"

        aggregator.dismiss_stage_error(SyncStage.PRIMARY)

        progress = _snapshot(aggregator)
        assert progress.has_error is False
        assert progress.current_label == "Syncing messages"

    def test_dismissing_a_failed_stage_makes_it_idle(self) -> None:
        aggregator = SyncProgressAggregator()
        aggregator.update_stage(SyncStage.PRIMARY, StageState.error("server unreachable"))

        aggregator.dismiss_stage_error(SyncStage.PRIMARY)

        assert aggregator.state_of(SyncStage.PRIMARY).status is StageStatus.IDLE
        assert aggregator.progress.value is None

    def test_retry_runs_handler_of_failed_stage(self) -> None:
        aggregator = SyncProgressAggregator()
        primary = MagicMock()
        secondary = MagicMock()
        aggregator.register_retry(SyncStage.PRIMARY, primary)
        aggregator.register_retry(SyncStage.SECONDARY, secondary)
        aggregator.update_stage(SyncStage.SECONDARY, StageState.error("no SMS database"))

        assert aggregator.retry_failed_stage() is SyncStage.SECONDARY

        secondary.assert_called_once_with()
        primary.assert_not_called()
        assert aggregator.progress.value is None

    def test_retry_picks_highest_weight_error(self) -> None:
        aggregator = SyncProgressAggregator()
        aggregator.update_stage(SyncStage.CATEGORIZE, StageState.error("model missing"))
        aggregator.update_stage(SyncStage.PRIMARY, StageState.error("server unreachable"))

        assert aggregator.retry_failed_stage() is SyncStage.PRIMARY
        assert _snapshot(aggregator).error_stage is SyncStage.CATEGORIZE

    def test_retry_without_error(self) -> None:
        aggregator = SyncProgressAggregator()
        handler = MagicMock()
        aggregator.register_retry(SyncStage.PRIMARY, handler)

        assert aggregator.retry_failed_stage() is None
        handler.assert_not_called()
