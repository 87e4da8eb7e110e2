"""
Transaction Nesting State Machine
=================================

Tracks the transaction depth of one connection. The allowed transitions depend
on the execution mode:

    LIVE   NONE  --begin-->  OPEN    (physical BEGIN)
           OPEN  --end---->  NONE    (physical COMMIT/ROLLBACK)

    DEBUG  NONE  --begin-->  OPEN    (physical BEGIN, never finished)
           OPEN  --begin-->  NESTED  (logical only)
           NESTED --end--->  OPEN    (logical only)

Every other (state, event) pair is a TransactionStateError. In DEBUG mode the
outer transaction can never be committed or rolled back through this API, so
nothing written during a debug run is persisted.
"""

import logging
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Dict, Optional, Tuple

from dbaccess.db_config import ExecutionMode
from dbaccess.errors import TransactionStateError

logger = logging.getLogger(__name__)


class TransactionState(IntEnum):
    """Transaction depth of a connection."""
    NONE = 0
    OPEN = 1
    NESTED = 2


class TransactionEvent(str, Enum):
    BEGIN = "begin"
    COMMIT = "commit"
    ROLLBACK = "rollback"


class PhysicalAction(str, Enum):
    """Statement that must reach the database for a transition."""
    BEGIN = "BEGIN"
    COMMIT = "COMMIT"
    ROLLBACK = "ROLLBACK"


@dataclass(frozen=True)
class Transition:
    target: TransactionState
    action: Optional[PhysicalAction]


_S = TransactionState
_E = TransactionEvent
_A = PhysicalAction

TRANSITIONS: Dict[ExecutionMode, Dict[Tuple[TransactionState, TransactionEvent], Transition]] = {
    ExecutionMode.LIVE: {
        (_S.NONE, _E.BEGIN): Transition(_S.OPEN, _A.BEGIN),
        (_S.OPEN, _E.COMMIT): Transition(_S.NONE, _A.COMMIT),
        (_S.OPEN, _E.ROLLBACK): Transition(_S.NONE, _A.ROLLBACK),
    },
    ExecutionMode.DEBUG: {
        (_S.NONE, _E.BEGIN): Transition(_S.OPEN, _A.BEGIN),
        (_S.OPEN, _E.BEGIN): Transition(_S.NESTED, None),
        (_S.NESTED, _E.COMMIT): Transition(_S.OPEN, None),
        (_S.NESTED, _E.ROLLBACK): Transition(_S.OPEN, None),
    },
}

_FAILURE_MESSAGES = {
    _E.BEGIN: "A transaction has already been started.",
    _E.COMMIT: "Failed to commit.  No transaction exists.",
    _E.ROLLBACK: "Failed to rollback.  No transaction exists.",
}


class TransactionTracker:
    """
    Holds the transaction state of one connection for a fixed mode.

    The tracker only decides; the caller performs the returned physical
    action and then calls apply() so a failed BEGIN/COMMIT leaves the
    state untouched.
    """

    def __init__(self, mode: ExecutionMode):
        self.mode = mode
        self.state = TransactionState.NONE
        self._table = TRANSITIONS[mode]

    @property
    def depth(self) -> int:
        return int(self.state)

    def plan(self, event: TransactionEvent) -> Transition:
        """
        Look up the transition for an event in the current state.

        Raises:
            TransactionStateError: If the event is not allowed in this state
        """
        transition = self._table.get((self.state, event))
        if transition is None:
            logger.warning(
                f"Rejected transaction {event.value} in {self.mode.value} mode "
                f"at depth {self.depth}"
            )
            raise TransactionStateError(_FAILURE_MESSAGES[event])
        return transition

    def apply(self, transition: Transition) -> int:
        self.state = transition.target
        return self.depth
