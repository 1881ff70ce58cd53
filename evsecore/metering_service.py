"""Meter value recording for all connectors of the charge point."""

from __future__ import annotations

import functools
import logging
import os
from collections.abc import Callable
from datetime import datetime

from evsecore.meter_recorder import ConnectorMeterValuesRecorder, MeteringConfig, MeterValuesReport
from evsecore.meter_store import MeterStore, TransactionMeterData
from evsecore.sampled_value import ReadingContext, SampledValue, SampledValueSampler
from evsecore.transaction import Transaction

logger = logging.getLogger(__name__)

METER_VALUES_TIMEOUT_MS = 120000


class MeteringService:
    """Runs one meter value recorder per connector and sends their reports.

    ``send`` is called with each report and the timeout of the request in
    milliseconds. ``get_transaction`` is called with a connector id and
    returns that connector's current transaction; pass None if transaction
    state is not available. All connectors share ``config``.
    """

    def __init__(
        self,
        send: Callable[[MeterValuesReport, int], object],
        connector_count: int,
        directory: str | os.PathLike | None = None,
        now: Callable[[], datetime] | None = None,
        tick_ms: Callable[[], int] | None = None,
        get_transaction: Callable[[int], Transaction | None] | None = None,
        config: MeteringConfig | None = None,
    ) -> None:
        self._send = send
        self.config = config if config is not None else MeteringConfig()
        self.meter_store = MeterStore(directory)
        self.connectors = [
            ConnectorMeterValuesRecorder(
                connector_id,
                self.meter_store,
                now,
                tick_ms,
                None if get_transaction is None else functools.partial(get_transaction, connector_id),
                self.config,
            )
            for connector_id in range(connector_count)
        ]

    @property
    def connector_count(self) -> int:
        return len(self.connectors)

    def _connector(self, connector_id: int) -> ConnectorMeterValuesRecorder:
        if not 0 <= connector_id < len(self.connectors):
            raise ValueError(f"connector id out of bounds: {connector_id}")
        return self.connectors[connector_id]

    def _connector_of(self, transaction: Transaction | None) -> ConnectorMeterValuesRecorder:
        if transaction is None:
            raise ValueError("no transaction given")
        return self._connector(transaction.connector_id)

    def loop(self) -> list[MeterValuesReport]:
        """Run all recorders and send the reports that are due; return them."""
        sent = []
        for connector in self.connectors:
            report = connector.loop()
            if report is not None:
                self._send(report, METER_VALUES_TIMEOUT_MS)
                sent.append(report)
        return sent

    def add_meter_value_sampler(self, connector_id: int, sampler: SampledValueSampler) -> None:
        self._connector(connector_id).add_meter_value_sampler(sampler)

    def read_tx_energy_meter(
        self, connector_id: int, context: ReadingContext
    ) -> SampledValue | None:
        return self._connector(connector_id).read_tx_energy_meter(context)

    def take_triggered_meter_values(self, connector_id: int) -> MeterValuesReport | None:
        """Snapshot of all selected meters of a connector now."""
        report = self._connector(connector_id).take_triggered_meter_values()
        if report is None:
            logger.debug("Did not take any samples for connectorId %d", connector_id)
        return report

    def begin_tx_meter_data(self, transaction: Transaction) -> None:
        self._connector_of(transaction).begin_tx_meter_data(transaction)

    def end_tx_meter_data(self, transaction: Transaction) -> TransactionMeterData | None:
        return self._connector_of(transaction).end_tx_meter_data(transaction)

    def get_stop_tx_meter_data(self, transaction: Transaction) -> TransactionMeterData | None:
        return self._connector_of(transaction).get_stop_tx_meter_data(transaction)

    def remove_tx_meter_data(self, connector_id: int, tx_nr: int) -> bool:
        return self.meter_store.remove(connector_id, tx_nr)