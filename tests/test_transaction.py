from datetime import datetime, timezone

import pytest

from evsecore.transaction import (
    IDTAG_LEN_MAX,
    Transaction,
    TransactionRPC,
    format_timestamp,
    parse_timestamp,
)


class RecordingStore:
    def __init__(self, result=True):
        self.committed = []
        self.result = result

    def commit(self, transaction):
        self.committed.append(transaction)
        return self.result


SAMPLE_TIME = "2022-02-01T20:53:32.486Z"


def test_timestamp_round_trip():
    assert format_timestamp(parse_timestamp(SAMPLE_TIME)) == SAMPLE_TIME


def test_parse_timestamp_converts_offsets_to_utc():
    shifted = parse_timestamp("2022-02-01T21:53:32.486+01:00")
    assert shifted == parse_timestamp(SAMPLE_TIME)
    assert shifted.tzinfo == timezone.utc


def test_parse_timestamp_rejects_invalid():
    with pytest.raises(ValueError):
        parse_timestamp("Invalid")
    with pytest.raises(ValueError):
        parse_timestamp(42)


def test_format_timestamp_treats_naive_as_utc():
    naive = parse_timestamp(SAMPLE_TIME).replace(tzinfo=None)
    assert format_timestamp(naive) == SAMPLE_TIME


def test_rpc_progress():
    rpc = TransactionRPC()
    assert rpc.is_completed is False
    rpc.request()
    assert rpc.is_completed is False
    rpc.confirm()
    assert rpc.is_completed is True


def test_fresh_transaction_is_preparing():
    tx = Transaction(None, 1, 0)
    assert tx.is_preparing
    assert not tx.is_running
    assert not tx.is_aborted
    assert tx.is_active
    assert not tx.is_in_session


def test_lifecycle_predicates():
    tx = Transaction(None, 1, 0)
    tx.id_tag = "abc"
    assert tx.is_in_session
    tx.start_rpc.request()
    assert tx.is_running and not tx.is_preparing
    tx.stop_rpc.request()
    assert not tx.is_running and not tx.is_active
    assert not tx.is_completed
    tx.stop_rpc.confirm()
    assert tx.is_completed


def test_ending_session_before_start_aborts():
    tx = Transaction(None, 1, 0)
    tx.end_session()
    assert tx.is_aborted
    assert not tx.is_preparing


def test_ending_session_after_start_is_not_abort():
    tx = Transaction(None, 1, 0)
    tx.start_rpc.request()
    tx.end_session()
    assert not tx.is_aborted
    assert tx.is_running


def test_deauthorized_only_after_confirmation():
    tx = Transaction(None, 1, 0)
    tx.authorized = False
    assert not tx.is_id_tag_deauthorized
    tx.start_rpc.confirm()
    assert tx.is_id_tag_deauthorized


def test_meter_defined_flags():
    tx = Transaction(None, 1, 0)
    assert not tx.meter_start_defined and not tx.meter_stop_defined
    tx.meter_start = 0
    tx.meter_stop = 5
    assert tx.meter_start_defined and tx.meter_stop_defined


def test_id_tag_is_truncated():
    tx = Transaction(None, 1, 0)
    long_tag = "X" * (IDTAG_LEN_MAX + 10)
    tx.id_tag = long_tag
    tx.stop_id_tag = long_tag
    assert tx.id_tag == long_tag[:IDTAG_LEN_MAX]
    assert tx.stop_id_tag == long_tag[:IDTAG_LEN_MAX]


def test_default_json_layout():
    tx = Transaction(None, 1, 0)
    assert tx.to_json() == {
        "session": {},
        "start": {"rpc": {"requested": False, "confirmed": False}, "client": {}},
        "stop": {"rpc": {"requested": False, "confirmed": False}, "client": {}},
    }


def test_server_side_only_when_confirmed():
    tx = Transaction(None, 1, 0)
    tx.transaction_id = 17
    assert "server" not in tx.to_json()["start"]
    tx.start_rpc.confirm()
    assert tx.to_json()["start"]["server"] == {"transactionId": 17, "authorized": True}


def _populated():
    tx = Transaction(None, 2, 7, silent=True)
    tx.id_tag = "tag-1"
    tx.session_timestamp = parse_timestamp(SAMPLE_TIME)
    tx.tx_profile_id = 3
    tx.end_session()
    tx.start_rpc.request()
    tx.start_rpc.confirm()
    tx.start_timestamp = parse_timestamp(SAMPLE_TIME)
    tx.meter_start = 100
    tx.transaction_id = 55
    tx.authorized = False
    tx.stop_rpc.request()
    tx.stop_timestamp = parse_timestamp(SAMPLE_TIME)
    tx.meter_stop = 250
    tx.stop_id_tag = "tag-2"
    tx.stop_reason = "Local"
    return tx


def test_json_round_trip():
    original = _populated()
    restored = Transaction(None, 2, 7)
    restored.update_from_json(original.to_json())
    assert restored.to_json() == original.to_json()
    assert restored.silent is True
    assert restored.transaction_id == 55
    assert restored.stop_reason == "Local"
    assert restored.session_timestamp == original.session_timestamp


def test_invalid_timestamp_keeps_previous_value():
    tx = Transaction(None, 1, 0)
    before = parse_timestamp(SAMPLE_TIME)
    tx.start_timestamp = before
    tx.update_from_json({"start": {"client": {"timestamp": "Invalid"}}})
    assert tx.start_timestamp == before


def test_rpc_flags_are_not_reset_by_false():
    tx = Transaction(None, 1, 0)
    tx.start_rpc.request()
    tx.update_from_json({"start": {"rpc": {"requested": False, "confirmed": False}}})
    assert tx.start_rpc.requested is True


def test_confirmed_start_without_server_uses_defaults():
    tx = Transaction(None, 1, 0)
    tx.update_from_json({"start": {"rpc": {"requested": True, "confirmed": True}}})
    assert tx.transaction_id == -1
    assert tx.authorized is False


def test_update_rejects_non_object():
    tx = Transaction(None, 1, 0)
    with pytest.raises(ValueError):
        tx.update_from_json(["not", "an", "object"])


def test_commit_delegates_to_store():
    store = RecordingStore(result=False)
    tx = Transaction(store, 1, 4)
    assert tx.commit() is False
    assert store.committed == [tx]


def test_commit_without_store_raises():
    with pytest.raises(RuntimeError):
        Transaction(None, 1, 0).commit()


def test_timestamps_accept_datetime_objects():
    tx = Transaction(None, 1, 0)
    moment = datetime(2022, 2, 1, 20, 53, 32, 486000, tzinfo=timezone.utc)
    tx.session_timestamp = moment
    assert tx.to_json()["session"]["timestamp"] == SAMPLE_TIME