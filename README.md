# evsecore

Building blocks for the charge point side of an OCPP 1.6 charging station,
in plain Python with no third-party dependencies. Each service takes plain
callables for its surroundings: a `send` function for outgoing requests,
`tick_ms` for a monotonic millisecond clock and `now` for the wall-clock
time. They can be driven from any main loop or from tests.

## Modules

- `evsecore.transaction_process`: `TransactionProcess` combines
  preconditions (`TxPrecondition`), triggers (`TxTrigger`) and an ordered
  enable sequence into one `TxEnableState` (`ACTIVE`, `INACTIVE` or
  `PENDING`).
- `evsecore.transaction`: `Transaction` holds the session, start and stop
  data, with a `TransactionRPC` for each of the start and stop requests.
  `to_json` and `update_from_json` turn it into a JSON-compatible dict and
  back. `parse_timestamp` and `format_timestamp` convert UTC timestamps.
- `evsecore.transaction_store`: `TransactionStore` keeps one
  `ConnectorTransactionStore` per connector. Each one is a numbered ring of
  transactions that holds at most four at a time. A silent transaction is
  created even when the ring is full. If a directory is given, every
  transaction goes to `tx-<connector>-<nr>.jsn` and the ring bounds go to
  `txstore.jsn`. Without one, the store lives in memory only.
- `evsecore.heartbeat`: `HeartbeatService.loop()` calls `send("Heartbeat")`
  once the interval, in seconds, has elapsed. The default interval is 86400.
- `evsecore.sampled_value`: `SampledValueSampler` reads a measurand through a
  callback and gives `SampledValue` objects with `SampledValueProperties`
  and a `ReadingContext`.
- `evsecore.meter_value`: `MeterValue` groups sampled values under one
  timestamp. `MeterValueBuilder` samples the measurands named in a
  comma-separated selection.
- `evsecore.meter_store`: `MeterStore` hands out the `TransactionMeterData`
  of each transaction, which holds the meter values for its StopTransaction.
  A record keeps at most four values, and once it is full each new value
  replaces the latest one. The values can be stored as
  `sd-<connector>-<nr>-<index>.jsn` and restored later.
- `evsecore.meter_recorder`: `ConnectorMeterValuesRecorder` takes periodic
  and clock-aligned samples of one connector, configured by
  `MeteringConfig`. When values are due, `loop()` returns a
  `MeterValuesReport`.
- `evsecore.metering_service`: `MeteringService` runs one recorder per
  connector. It passes each report to `send(report, 120000)`.
- `evsecore.smart_charging_model`: `ChargingProfile`, `ChargingSchedule` and
  `ChargingSchedulePeriod` are read from OCPP JSON. `inference_limit`
  returns the limit at a point in time, or `None`, together with the time at
  which the limit changes next. It covers absolute, recurring (daily or
  weekly) and relative profiles.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Examples

```python
from evsecore.transaction_process import TransactionProcess, TxTrigger, TxEnableState

process = TransactionProcess(connector_id=1)
process.add_trigger(lambda: TxTrigger.ACTIVE)
process.add_enable_step(lambda trigger: TxEnableState.ACTIVE)
print(process.evaluate_process_steps())  # TxEnableState.ACTIVE
```

```python
from evsecore.transaction_store import TransactionStore

store = TransactionStore(connector_count=2, directory="./store")
tx = store.create_transaction(1)
tx.id_tag = "TAG0001"
tx.start_rpc.request()
tx.commit()
print(store.size(1))  # 1
```

```python
from datetime import datetime, timezone
from evsecore.smart_charging_model import ChargingProfile

profile = ChargingProfile.from_json({
    "chargingProfileId": 1,
    "stackLevel": 0,
    "chargingProfilePurpose": "TxDefaultProfile",
    "chargingProfileKind": "Absolute",
    "chargingSchedule": {
        "startSchedule": "2023-01-01T00:00:00.000Z",
        "chargingRateUnit": "W",
        "chargingSchedulePeriod": [{"startPeriod": 0, "limit": 11000}],
    },
})
limit, next_change = profile.inference_limit(datetime(2023, 1, 2, tzinfo=timezone.utc))
print(limit)  # 11000.0
```

## What this package does not do

It does not connect to a central system. It has no WebSocket or other
transport and does not build or parse OCPP request frames. `send` is
whatever callable you pass in. There is no command to run.

The smart charging part is the model alone. Nothing here stacks the
profiles of several purposes and stack levels, stores them, or reports
limit changes. There is also no firmware update, diagnostics, connector
status or configuration service. Settings such as the heartbeat interval or
`MeteringConfig` are plain attributes that you manage yourself.