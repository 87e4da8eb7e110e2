"""
Unit Tests for the transaction nesting state machine.
"""

import pytest

from dbaccess.db_config import ExecutionMode
from dbaccess.errors import TransactionStateError
from dbaccess.transactions import (
    PhysicalAction,
    TransactionEvent,
    TransactionState,
    TransactionTracker,
)


def run(tracker, event):
    return tracker.apply(tracker.plan(event))


class TestLiveMode:
    """LIVE mode allows a single physical level."""

    def test_begin_opens_physical_transaction(self):
        tracker = TransactionTracker(ExecutionMode.LIVE)
        transition = tracker.plan(TransactionEvent.BEGIN)

        assert transition.action is PhysicalAction.BEGIN
        assert transition.target is TransactionState.OPEN

    def test_second_begin_rejected(self):
        tracker = TransactionTracker(ExecutionMode.LIVE)
        run(tracker, TransactionEvent.BEGIN)

        with pytest.raises(TransactionStateError):
            tracker.plan(TransactionEvent.BEGIN)
        assert tracker.depth == 1

    @pytest.mark.parametrize("event,action", [
        (TransactionEvent.COMMIT, PhysicalAction.COMMIT),
        (TransactionEvent.ROLLBACK, PhysicalAction.ROLLBACK),
    ])
    def test_end_closes_physical_transaction(self, event, action):
        tracker = TransactionTracker(ExecutionMode.LIVE)
        run(tracker, TransactionEvent.BEGIN)

        transition = tracker.plan(event)

        assert transition.action is action
        assert tracker.apply(transition) == 0


class TestDebugMode:
    """DEBUG mode keeps an outer transaction that is never finished."""

    def test_nested_begin_is_logical(self):
        tracker = TransactionTracker(ExecutionMode.DEBUG)
        run(tracker, TransactionEvent.BEGIN)

        transition = tracker.plan(TransactionEvent.BEGIN)

        assert transition.action is None
        assert tracker.apply(transition) == 2
        assert tracker.state is TransactionState.NESTED

    def test_third_begin_rejected(self):
        tracker = TransactionTracker(ExecutionMode.DEBUG)
        run(tracker, TransactionEvent.BEGIN)
        run(tracker, TransactionEvent.BEGIN)

        with pytest.raises(TransactionStateError, match="already been started"):
            tracker.plan(TransactionEvent.BEGIN)

    def test_nested_commit_is_logical(self):
        tracker = TransactionTracker(ExecutionMode.DEBUG)
        run(tracker, TransactionEvent.BEGIN)
        run(tracker, TransactionEvent.BEGIN)

        transition = tracker.plan(TransactionEvent.COMMIT)

        assert transition.action is None
        assert tracker.apply(transition) == 1

    @pytest.mark.parametrize("event", [TransactionEvent.COMMIT, TransactionEvent.ROLLBACK])
    def test_outer_transaction_cannot_be_finished(self, event):
        tracker = TransactionTracker(ExecutionMode.DEBUG)
        run(tracker, TransactionEvent.BEGIN)

        with pytest.raises(TransactionStateError, match="No transaction exists"):
            tracker.plan(event)
        assert tracker.state is TransactionState.OPEN


@pytest.mark.parametrize("mode", [ExecutionMode.LIVE, ExecutionMode.DEBUG])
@pytest.mark.parametrize("event", [TransactionEvent.COMMIT, TransactionEvent.ROLLBACK])
def test_end_without_transaction_rejected(mode, event):
    tracker = TransactionTracker(mode)

    with pytest.raises(TransactionStateError):
        tracker.plan(event)
    assert tracker.depth == 0
