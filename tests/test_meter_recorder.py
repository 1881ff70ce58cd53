from datetime import datetime, timedelta, timezone

from evsecore.meter_recorder import (
    ConnectorMeterValuesRecorder,
    MeteringConfig,
    MeterValuesReport,
)
from evsecore.meter_store import MeterStore
from evsecore.sampled_value import ReadingContext, SampledValueProperties, SampledValueSampler
from evsecore.transaction import Transaction

ENERGY = "Energy.Active.Import.Register"
POWER = "Power.Active.Import"


class Clock:
    def __init__(self):
        self.ms = 0
        self.time = datetime(2023, 1, 1, tzinfo=timezone.utc)

    def tick(self):
        return self.ms

    def now(self):
        return self.time


def energy_sampler(value=1234):
    return SampledValueSampler(
        SampledValueProperties(measurand=ENERGY, unit="Wh"), lambda ctx: value, int
    )


def make_recorder(clock, config=None, get_transaction=None):
    recorder = ConnectorMeterValuesRecorder(
        1, MeterStore(None), clock.now, clock.tick, get_transaction, config or MeteringConfig()
    )
    recorder.add_meter_value_sampler(energy_sampler())
    return recorder


def running_tx(tx_nr=0, silent=False):
    tx = Transaction(None, 1, tx_nr, silent)
    tx.start_rpc.request()
    return tx


def test_validate_select():
    recorder = make_recorder(Clock())
    assert recorder.validate_select(ENERGY)
    assert recorder.validate_select("," + ENERGY + ",")
    assert recorder.validate_select("")
    assert not recorder.validate_select(ENERGY + "," + POWER)


def test_read_tx_energy_meter():
    clock = Clock()
    recorder = ConnectorMeterValuesRecorder(1, MeterStore(None), clock.now, clock.tick)
    assert recorder.read_tx_energy_meter(ReadingContext.TRANSACTION_BEGIN) is None
    recorder.add_meter_value_sampler(energy_sampler(1234))
    value = recorder.read_tx_energy_meter(ReadingContext.TRANSACTION_BEGIN)
    assert value.to_int() == 1234
    assert value.context is ReadingContext.TRANSACTION_BEGIN


def test_triggered_meter_values():
    clock = Clock()
    tx = running_tx()
    recorder = make_recorder(clock, get_transaction=lambda: tx)
    report = recorder.take_triggered_meter_values()
    assert isinstance(report, MeterValuesReport)
    assert report.connector_id == 1
    assert report.transaction is tx
    assert report.meter_values[0].sampled_values[0].context is ReadingContext.TRIGGER
    assert report.meter_values[0].timestamp == clock.time


def test_triggered_without_selection_is_none():
    config = MeteringConfig(meter_values_sampled_data="")
    recorder = make_recorder(Clock(), config)
    assert recorder.take_triggered_meter_values() is None


def test_periodic_sampling_outside_transaction():
    clock = Clock()
    config = MeteringConfig(meter_values_in_tx_only=False)
    recorder = make_recorder(clock, config)
    assert recorder.loop() is None
    clock.ms = 60000
    assert recorder.loop() is None
    report = recorder.loop()
    assert len(report.meter_values) == 1
    assert report.meter_values[0].sampled_values[0].context is ReadingContext.SAMPLE_PERIODIC
    assert report.transaction is None
    assert recorder.loop() is None


def test_in_tx_only_discards_samples_outside_transaction():
    clock = Clock()
    recorder = make_recorder(clock, get_transaction=lambda: None)
    clock.ms = 120000
    assert recorder.loop() is None
    assert recorder.loop() is None


def test_transaction_end_flushes_cache():
    clock = Clock()
    tx = running_tx()
    config = MeteringConfig(meter_value_cache_size=5)
    recorder = make_recorder(clock, config, get_transaction=lambda: tx)
    assert recorder.loop() is None
    clock.ms = 60000
    assert recorder.loop() is None
    tx.stop_rpc.request()
    report = recorder.loop()
    assert report.transaction is tx
    assert len(report.meter_values) == 1


def test_begin_and_end_tx_meter_data():
    clock = Clock()
    tx = running_tx()
    config = MeteringConfig(stop_txn_sampled_data=ENERGY)
    recorder = make_recorder(clock, config, get_transaction=lambda: tx)
    recorder.loop()
    recorder.begin_tx_meter_data(tx)
    data = recorder.end_tx_meter_data(tx)
    contexts = [mv.sampled_values[0].context for mv in data.tx_data]
    assert contexts == [ReadingContext.TRANSACTION_BEGIN, ReadingContext.TRANSACTION_END]
    assert data.tx_nr == tx.tx_nr


def test_silent_transaction_has_no_stop_data():
    clock = Clock()
    tx = running_tx(silent=True)
    config = MeteringConfig(stop_txn_sampled_data=ENERGY)
    recorder = make_recorder(clock, config)
    recorder.begin_tx_meter_data(tx)
    assert recorder.end_tx_meter_data(tx) is None
    assert recorder.get_stop_tx_meter_data(tx) is None


def test_clock_aligned_sampling():
    clock = Clock()
    config = MeteringConfig(
        meter_values_in_tx_only=False, meter_value_sample_interval=0, clock_aligned_data_interval=900
    )
    recorder = make_recorder(clock, config)
    assert recorder.loop() is None
    clock.time += timedelta(seconds=300)
    assert recorder.loop() is None
    assert recorder.loop() is None
    clock.time += timedelta(seconds=600)
    assert recorder.loop() is None
    report = recorder.loop()
    mv = report.meter_values[0]
    assert mv.timestamp == clock.time
    assert mv.sampled_values[0].context is ReadingContext.SAMPLE_CLOCK


def test_clock_aligned_wraps_to_midnight():
    clock = Clock()
    clock.time = datetime(2023, 1, 1, 23, 50, tzinfo=timezone.utc)
    config = MeteringConfig(
        meter_values_in_tx_only=False, meter_value_sample_interval=0, clock_aligned_data_interval=900
    )
    recorder = make_recorder(clock, config)
    recorder.loop()
    clock.time = datetime(2023, 1, 1, 23, 55, tzinfo=timezone.utc)
    recorder.loop()
    assert recorder.loop() is None
    midnight = datetime(2023, 1, 2, tzinfo=timezone.utc)
    clock.time = midnight
    recorder.loop()
    report = recorder.loop()
    assert report.meter_values[0].timestamp == midnight