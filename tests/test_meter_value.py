from datetime import datetime, timezone

import pytest

from evsecore.meter_value import MeterValue, MeterValueBuilder
from evsecore.sampled_value import (
    ReadingContext,
    SampledValue,
    SampledValueProperties,
    SampledValueSampler,
)

ENERGY = "Energy.Active.Import.Register"
POWER = "Power.Active.Import"
TS = datetime(2023, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def _sampler(measurand, reading, value_type=int):
    return SampledValueSampler(
        SampledValueProperties(measurand=measurand), lambda ctx: reading, value_type
    )


def test_meter_value_to_json():
    mv = MeterValue(TS)
    mv.add_sampled_value(SampledValue(SampledValueProperties(measurand=ENERGY), ReadingContext.TRIGGER, 5))
    assert mv.to_json() == {
        "timestamp": "2023-01-02T03:04:05.000Z",
        "sampledValue": [{"value": "5", "context": "Trigger", "measurand": ENERGY}],
    }


def test_take_sample_selects_measurands_in_sampler_order():
    samplers = [_sampler(ENERGY, 100), _sampler(POWER, 7), _sampler("Voltage", 230)]
    builder = MeterValueBuilder(samplers, f"{POWER},{ENERGY}")
    mv = builder.take_sample(TS, ReadingContext.SAMPLE_PERIODIC)
    assert [sv.properties.measurand for sv in mv.sampled_values] == [ENERGY, POWER]
    assert [sv.value for sv in mv.sampled_values] == [100, 7]
    assert mv.timestamp == TS


def test_empty_selection_gives_none():
    builder = MeterValueBuilder([_sampler(ENERGY, 1)], "")
    assert builder.take_sample(TS, ReadingContext.SAMPLE_PERIODIC) is None


def test_samplers_added_later_are_picked_up():
    samplers = []
    builder = MeterValueBuilder(samplers, ENERGY)
    assert builder.take_sample(TS, ReadingContext.OTHER) is None
    samplers.append(_sampler(ENERGY, 9))
    mv = builder.take_sample(TS, ReadingContext.OTHER)
    assert [sv.value for sv in mv.sampled_values] == [9]


def test_selection_change_is_observed():
    selection = {"value": ENERGY}
    samplers = [_sampler(ENERGY, 1), _sampler(POWER, 2)]
    builder = MeterValueBuilder(samplers, lambda: selection["value"])
    first = builder.take_sample(TS, ReadingContext.OTHER)
    assert [sv.properties.measurand for sv in first.sampled_values] == [ENERGY]
    selection["value"] = POWER
    second = builder.take_sample(TS, ReadingContext.OTHER)
    assert [sv.properties.measurand for sv in second.sampled_values] == [POWER]


def test_json_round_trip():
    samplers = [_sampler(ENERGY, 1500), _sampler(POWER, 11.5, float)]
    builder = MeterValueBuilder(samplers, f"{ENERGY},{POWER}")
    original = builder.take_sample(TS, ReadingContext.TRANSACTION_BEGIN)
    restored = builder.deserialize_sample(original.to_json())
    assert restored.timestamp == TS
    assert restored.to_json() == original.to_json()


def test_deserialize_drops_unknown_sampled_values():
    builder = MeterValueBuilder([_sampler(ENERGY, 0)], ENERGY)
    data = {
        "timestamp": "2023-01-02T03:04:05.000Z",
        "sampledValue": [
            {"value": "3", "measurand": "Unknown"},
            {"value": "4", "measurand": ENERGY, "context": "Sample.Clock"},
        ],
    }
    mv = builder.deserialize_sample(data)
    assert [sv.value for sv in mv.sampled_values] == [4]
    assert mv.sampled_values[0].context is ReadingContext.SAMPLE_CLOCK


@pytest.mark.parametrize("data", [{}, {"timestamp": "not a date", "sampledValue": []}])
def test_deserialize_invalid_timestamp(data):
    builder = MeterValueBuilder([_sampler(ENERGY, 0)], ENERGY)
    with pytest.raises(ValueError):
        builder.deserialize_sample(data)