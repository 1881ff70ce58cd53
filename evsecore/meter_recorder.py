"""Periodic, clock-aligned and transaction meter readings of one connector."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from evsecore.meter_store import MeterStore, TransactionMeterData
from evsecore.meter_value import MeterValue, MeterValueBuilder
from evsecore.sampled_value import ReadingContext, SampledValue, SampledValueSampler
from evsecore.transaction import Transaction

logger = logging.getLogger(__name__)

ENERGY_MEASURAND = "Energy.Active.Import.Register"
DEFAULT_SELECTION = "Energy.Active.Import.Register,Power.Active.Import"

_SECONDS_PER_DAY = 24 * 3600
_ALIGNED_TOLERANCE = 60  # seconds
_MIDNIGHT_BASE = datetime(2010, 1, 1, tzinfo=timezone.utc)


def _monotonic_ms() -> int:
    return time.monotonic_ns() // 1_000_000


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MeteringConfig:
    """Configuration keys that control which meter values are taken and when."""

    meter_values_sampled_data: str = DEFAULT_SELECTION
    meter_values_sampled_data_max_length: int = 8
    meter_value_cache_size: int = 1
    meter_value_sample_interval: int = 60
    stop_txn_sampled_data: str = ""
    stop_txn_sampled_data_max_length: int = 8
    meter_values_aligned_data: str = DEFAULT_SELECTION
    meter_values_aligned_data_max_length: int = 8
    clock_aligned_data_interval: int = 0
    stop_txn_aligned_data: str = ""
    meter_values_in_tx_only: bool = True
    stop_txn_data_capture_periodic: bool = False


@dataclass
class MeterValuesReport:
    """Meter values of one connector that are due to be sent to the server."""

    meter_values: list[MeterValue]
    connector_id: int
    transaction: Transaction | None = None


@dataclass
class _Builders:
    sampled: MeterValueBuilder
    aligned: MeterValueBuilder
    stop_sampled: MeterValueBuilder
    stop_aligned: MeterValueBuilder


class ConnectorMeterValuesRecorder:
    """Collects meter values of one connector and hands them out as reports.

    ``now`` returns the current wall-clock time, ``tick_ms`` a monotonic clock
    in milliseconds. ``get_transaction`` returns the current transaction of
    the connector; pass None if the connector has no transaction state.
    """

    def __init__(
        self,
        connector_id: int,
        meter_store: MeterStore,
        now: Callable[[], datetime] | None = None,
        tick_ms: Callable[[], int] | None = None,
        get_transaction: Callable[[], Transaction | None] | None = None,
        config: MeteringConfig | None = None,
    ) -> None:
        self.connector_id = connector_id
        self.meter_store = meter_store
        self._now_fn = now or _utc_now
        self._tick_ms = tick_ms or _monotonic_ms
        self._get_transaction = get_transaction
        self.config = config if config is not None else MeteringConfig()

        self.samplers: list[SampledValueSampler] = []
        self._energy_sampler_index = -1

        self._meter_data: list[MeterValue] = []
        self._stop_txn_data: TransactionMeterData | None = None
        self._last_sample_time = 0
        self._next_aligned_time: datetime | None = None
        self._transaction: Transaction | None = None
        self._track_tx_running = False

        cfg = self.config
        self._builders = _Builders(
            sampled=MeterValueBuilder(self.samplers, lambda: cfg.meter_values_sampled_data),
            aligned=MeterValueBuilder(self.samplers, lambda: cfg.meter_values_aligned_data),
            stop_sampled=MeterValueBuilder(self.samplers, lambda: cfg.stop_txn_sampled_data),
            stop_aligned=MeterValueBuilder(self.samplers, lambda: cfg.stop_txn_aligned_data),
        )

    def _now(self) -> datetime:
        now = self._now_fn()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now

    def validate_select(self, selection: str) -> bool:
        """Check that every entry of a comma-separated selection has a sampler."""
        measurands = {sampler.properties.measurand for sampler in self.samplers}
        for entry in selection.split(","):
            if entry and entry not in measurands:
                logger.warning("could not find metering device for %s", entry)
                return False
        return True

    def _add_stop_tx(self, meter_value: MeterValue | None) -> None:
        if meter_value is None or self._stop_txn_data is None:
            return
        try:
            self._stop_txn_data.add_tx_data(meter_value)
        except (RuntimeError, ValueError) as exc:
            logger.error("could not record stop transaction data: %s", exc)

    def _reload_stop_txn_data(self, transaction: Transaction) -> None:
        if self._stop_txn_data is None or self._stop_txn_data.tx_nr != transaction.tx_nr:
            self._stop_txn_data = self.meter_store.get_tx_meter_data(
                self._builders.stop_sampled, transaction
            )

    @staticmethod
    def _next_aligned(now: datetime, interval: int) -> datetime:
        since_midnight = int((now - _MIDNIGHT_BASE).total_seconds()) % _SECONDS_PER_DAY
        midnight = now.replace(microsecond=0) - timedelta(seconds=since_midnight)
        offset = since_midnight + interval
        if offset >= _SECONDS_PER_DAY:
            return midnight + timedelta(seconds=_SECONDS_PER_DAY)
        return midnight + timedelta(seconds=(offset // interval) * interval)

    def loop(self) -> MeterValuesReport | None:
        """Take due samples; return a report when meter values should be sent."""
        cfg = self.config

        tx_break = False
        if self._get_transaction is not None:
            current = self._get_transaction()
            running = current is not None and current.is_running
            tx_break = running != self._track_tx_running
            self._track_tx_running = running

        if tx_break:
            self._last_sample_time = self._tick_ms()

        if (tx_break or len(self._meter_data) >= cfg.meter_value_cache_size) and self._meter_data:
            report = MeterValuesReport(self._meter_data, self.connector_id, self._transaction)
            self._meter_data = []
            return report

        if self._get_transaction is not None:
            self._transaction = self._get_transaction()
            transaction = self._transaction
            if transaction is not None and transaction.is_running and not transaction.silent:
                if self._stop_txn_data is None or self._stop_txn_data.tx_nr != transaction.tx_nr:
                    logger.warning("reload stopTxnData")
                    self._reload_stop_txn_data(transaction)
            elif cfg.meter_values_in_tx_only:
                self._meter_data.clear()
                return None

        aligned_interval = cfg.clock_aligned_data_interval
        if aligned_interval >= 1:
            now = self._now()
            dt = (
                None
                if self._next_aligned_time is None
                else int((self._next_aligned_time - now).total_seconds())
            )
            if dt is None or dt <= 0 or dt > aligned_interval:
                if dt is not None and abs(dt) <= _ALIGNED_TOLERANCE:
                    logger.debug("Clock aligned measurement %ds: in time", dt)
                    aligned = self._builders.aligned.take_sample(now, ReadingContext.SAMPLE_CLOCK)
                    if aligned is not None:
                        self._meter_data.append(aligned)
                    if self._stop_txn_data is not None:
                        self._add_stop_tx(
                            self._builders.stop_aligned.take_sample(now, ReadingContext.SAMPLE_CLOCK)
                        )
                else:
                    logger.debug("Clock aligned measurement off, e.g. because of first run. Ignore")
                self._next_aligned_time = self._next_aligned(now, aligned_interval)

        sample_interval = cfg.meter_value_sample_interval
        if sample_interval >= 1:
            if self._tick_ms() - self._last_sample_time >= sample_interval * 1000:
                now = self._now()
                sample = self._builders.sampled.take_sample(now, ReadingContext.SAMPLE_PERIODIC)
                if sample is not None:
                    self._meter_data.append(sample)
                if self._stop_txn_data is not None and cfg.stop_txn_data_capture_periodic:
                    self._add_stop_tx(
                        self._builders.stop_sampled.take_sample(now, ReadingContext.SAMPLE_PERIODIC)
                    )
                self._last_sample_time = self._tick_ms()

        if aligned_interval < 1 and sample_interval < 1:
            self._meter_data.clear()

        return None

    def add_meter_value_sampler(self, sampler: SampledValueSampler) -> None:
        """Register a meter; the energy register becomes the transaction meter."""
        if sampler.properties.measurand == ENERGY_MEASURAND:
            self._energy_sampler_index = len(self.samplers)
        self.samplers.append(sampler)

    def read_tx_energy_meter(self, context: ReadingContext) -> SampledValue | None:
        """Read the energy register; None if no energy meter is registered."""
        if 0 <= self._energy_sampler_index < len(self.samplers):
            return self.samplers[self._energy_sampler_index].take_value(context)
        logger.debug("Called read_tx_energy_meter(), but no energy sampler set")
        return None

    def take_triggered_meter_values(self) -> MeterValuesReport | None:
        """Sample all selected meters now; None if nothing is selected."""
        sample = self._builders.sampled.take_sample(self._now(), ReadingContext.TRIGGER)
        if sample is None:
            return None
        transaction = self._get_transaction() if self._get_transaction is not None else None
        return MeterValuesReport([sample], self.connector_id, transaction)

    def begin_tx_meter_data(self, transaction: Transaction) -> None:
        """Record the meter values at the start of a transaction."""
        self._reload_stop_txn_data(transaction)
        if self._stop_txn_data is not None:
            self._add_stop_tx(
                self._builders.stop_sampled.take_sample(
                    self._now(), ReadingContext.TRANSACTION_BEGIN
                )
            )

    def end_tx_meter_data(self, transaction: Transaction) -> TransactionMeterData | None:
        """Record the meter values at the end of a transaction and hand out its data."""
        self._reload_stop_txn_data(transaction)
        if self._stop_txn_data is not None:
            self._add_stop_tx(
                self._builders.stop_sampled.take_sample(
                    self._now(), ReadingContext.TRANSACTION_END
                )
            )
        data, self._stop_txn_data = self._stop_txn_data, None
        return data

    def get_stop_tx_meter_data(self, transaction: Transaction) -> TransactionMeterData | None:
        """Return the stored meter data of a transaction, loading it if needed."""
        data = self.meter_store.get_tx_meter_data(self._builders.stop_sampled, transaction)
        if data is None:
            logger.error("could not create TxData")
        return data