"""Preconditions, triggers and the enable sequence that gate a transaction."""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum

logger = logging.getLogger(__name__)


class TxPrecondition(Enum):
    """State of a condition that must hold before a transaction is possible."""

    ACTIVE = "Active"
    INACTIVE = "Inactive"


class TxTrigger(Enum):
    """State of an input that asks for a transaction to start."""

    ACTIVE = "Active"
    INACTIVE = "Inactive"


class TxEnableState(Enum):
    """Combined result of the triggers and the enable sequence."""

    ACTIVE = "Active"
    INACTIVE = "Inactive"
    PENDING = "Pending"


class TransactionProcess:
    """Evaluates whether the charger is ready to run a transaction.

    All preconditions must be active and every trigger must be active for a
    transaction to be triggered. The enable steps are then asked in reverse
    order of registration to become active; when the trigger drops, they are
    asked in registration order to become inactive.
    """

    def __init__(self, connector_id: int) -> None:
        self.connector_id = connector_id
        self._preconditions: list[Callable[[], TxPrecondition]] = []
        self._triggers: list[Callable[[], TxTrigger]] = []
        self._enable_sequence: list[Callable[[TxTrigger], TxEnableState]] = []
        self.active_trigger_exists = False
        self.state = TxEnableState.INACTIVE

    def add_precondition(self, fn: Callable[[], TxPrecondition]) -> None:
        """Register a condition that must be active for any transaction."""
        self._preconditions.append(fn)

    def add_trigger(self, fn: Callable[[], TxTrigger]) -> None:
        """Register an input that must be active to trigger a transaction."""
        self._triggers.append(fn)

    def add_enable_step(self, fn: Callable[[TxTrigger], TxEnableState]) -> None:
        """Register a preparation step of the enable sequence."""
        self._enable_sequence.append(fn)

    def evaluate_process_steps(self) -> TxEnableState:
        """Re-evaluate all steps, update the state and return it."""
        before = self.state

        preconditions_met = all(
            cond() == TxPrecondition.ACTIVE for cond in self._preconditions
        )

        trigger = (
            TxTrigger.ACTIVE
            if self._triggers and preconditions_met
            else TxTrigger.INACTIVE
        )

        results = [fn() for fn in self._triggers]
        self.active_trigger_exists = any(r == TxTrigger.ACTIVE for r in results)
        if any(r != TxTrigger.ACTIVE for r in results):
            trigger = TxTrigger.INACTIVE

        if trigger == TxTrigger.ACTIVE:
            target = TxEnableState.ACTIVE
            steps = reversed(self._enable_sequence)
        else:
            target = TxEnableState.INACTIVE
            steps = iter(self._enable_sequence)

        state = target
        for step in steps:
            if step(trigger) != target:
                state = TxEnableState.PENDING
                break
        self.state = state

        if before != self.state:
            logger.debug("Transition from %s to %s", before.value, self.state.value)
        return self.state