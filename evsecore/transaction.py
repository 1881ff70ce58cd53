"""Client- and server-side state of a charging transaction."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

logger = logging.getLogger(__name__)

IDTAG_LEN_MAX = 20
REASON_LEN_MAX = 20


def parse_timestamp(text: str) -> datetime:
    """Parse an ISO 8601 timestamp into an aware UTC datetime.

    Raises ValueError if the text is not a valid timestamp.
    """
    if not isinstance(text, str):
        raise ValueError(f"invalid timestamp: {text!r}")
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValueError(f"invalid timestamp: {text!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(timestamp: datetime) -> str:
    """Format a datetime as a UTC JSON date with millisecond precision."""
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    utc = timestamp.astimezone(timezone.utc)
    return f"{utc:%Y-%m-%dT%H:%M:%S}.{utc.microsecond // 1000:03d}Z"


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _as_bool(value: Any, default: bool) -> bool:
    return value if isinstance(value, bool) else default


def _as_int(value: Any, default: int) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return default


def _as_str(value: Any, default: str) -> str:
    return value if isinstance(value, str) else default


def _parse_or_keep(value: Any, current: datetime | None) -> datetime | None:
    try:
        return parse_timestamp(value)
    except ValueError:
        return current


class TransactionCommitter(Protocol):
    def commit(self, transaction: "Transaction") -> bool: ...


@dataclass
class TransactionRPC:
    """Progress of one request/confirmation exchange with the server."""

    requested: bool = False
    confirmed: bool = False

    def request(self) -> None:
        """Mark the request as sent."""
        self.requested = True

    def confirm(self) -> None:
        """Mark the request as confirmed by the server."""
        self.confirmed = True

    @property
    def is_completed(self) -> bool:
        return self.requested and self.confirmed

    def _to_json(self) -> dict:
        return {"requested": self.requested, "confirmed": self.confirmed}

    def _update_from_json(self, rpc: dict) -> None:
        if _as_bool(rpc.get("requested"), False):
            self.requested = True
        if _as_bool(rpc.get("confirmed"), False):
            self.confirmed = True


class Transaction:
    """A charging transaction with its session, start and stop data.

    ``store`` is the object that persists the transaction on ``commit``.
    """

    def __init__(
        self,
        store: TransactionCommitter | None,
        connector_id: int,
        tx_nr: int,
        silent: bool = False,
    ) -> None:
        self.store = store
        self.connector_id = connector_id
        self.tx_nr = tx_nr
        self.silent = silent

        self._id_tag = ""
        self.session_timestamp: datetime | None = None
        self.tx_profile_id = -1
        self.active = True

        self.start_rpc = TransactionRPC()
        self.start_timestamp: datetime | None = None
        self.meter_start = -1
        self.authorized = True
        self.transaction_id = -1

        self.stop_rpc = TransactionRPC()
        self._stop_id_tag = ""
        self.stop_timestamp: datetime | None = None
        self.meter_stop = -1
        self._stop_reason = ""

    @property
    def id_tag(self) -> str:
        return self._id_tag

    @id_tag.setter
    def id_tag(self, value: str) -> None:
        self._id_tag = value[:IDTAG_LEN_MAX]

    @property
    def stop_id_tag(self) -> str:
        return self._stop_id_tag

    @stop_id_tag.setter
    def stop_id_tag(self, value: str) -> None:
        self._stop_id_tag = value[:IDTAG_LEN_MAX]

    @property
    def stop_reason(self) -> str:
        return self._stop_reason

    @stop_reason.setter
    def stop_reason(self, value: str) -> None:
        self._stop_reason = value[:REASON_LEN_MAX]

    @property
    def is_aborted(self) -> bool:
        return not self.start_rpc.requested and not self.active

    @property
    def is_completed(self) -> bool:
        return self.stop_rpc.confirmed

    @property
    def is_preparing(self) -> bool:
        return self.active and not self.start_rpc.requested and not self.stop_rpc.requested

    @property
    def is_running(self) -> bool:
        return self.start_rpc.requested and not self.stop_rpc.requested

    @property
    def is_active(self) -> bool:
        return self.active and not self.stop_rpc.requested

    @property
    def is_in_session(self) -> bool:
        return self.is_active and bool(self.id_tag)

    @property
    def is_id_tag_deauthorized(self) -> bool:
        return self.start_rpc.confirmed and not self.authorized

    @property
    def meter_start_defined(self) -> bool:
        return self.meter_start >= 0

    @property
    def meter_stop_defined(self) -> bool:
        return self.meter_stop >= 0

    def end_session(self) -> None:
        """Mark the charging session as no longer active."""
        self.active = False

    def to_json(self) -> dict:
        """Serialize the session state into a JSON-compatible dict."""
        session: dict[str, Any] = {}
        if self.id_tag:
            session["idTag"] = self.id_tag
        if self.session_timestamp is not None:
            session["timestamp"] = format_timestamp(self.session_timestamp)
        if self.tx_profile_id >= 0:
            session["txProfileId"] = self.tx_profile_id
        if not self.active:
            session["active"] = False

        start_client: dict[str, Any] = {}
        if self.start_timestamp is not None:
            start_client["timestamp"] = format_timestamp(self.start_timestamp)
        if self.meter_start >= 0:
            start_client["meter"] = self.meter_start
        start: dict[str, Any] = {"rpc": self.start_rpc._to_json(), "client": start_client}
        if self.start_rpc.confirmed:
            start["server"] = {
                "transactionId": self.transaction_id,
                "authorized": self.authorized,
            }

        stop_client: dict[str, Any] = {}
        if self.stop_timestamp is not None:
            stop_client["timestamp"] = format_timestamp(self.stop_timestamp)
        if self.meter_stop >= 0:
            stop_client["meter"] = self.meter_stop
        if self.stop_id_tag:
            stop_client["idTag"] = self.stop_id_tag
        if self.stop_reason:
            stop_client["reason"] = self.stop_reason
        stop = {"rpc": self.stop_rpc._to_json(), "client": stop_client}

        state: dict[str, Any] = {"session": session, "start": start, "stop": stop}
        if self.silent:
            state["silent"] = True
        return state

    def update_from_json(self, state: dict) -> None:
        """Load session state previously produced by ``to_json``."""
        if not isinstance(state, dict):
            raise ValueError("transaction state must be a JSON object")

        session = _as_dict(state.get("session"))
        if "idTag" in session:
            self.id_tag = _as_str(session["idTag"], "")
        if "timestamp" in session:
            self.session_timestamp = _parse_or_keep(session["timestamp"], self.session_timestamp)
        if "txProfileId" in session:
            self.tx_profile_id = _as_int(session["txProfileId"], -1)
        if "active" in session:
            self.active = _as_bool(session["active"], True)

        start = _as_dict(state.get("start"))
        if "rpc" in start:
            self.start_rpc._update_from_json(_as_dict(start["rpc"]))
        start_client = _as_dict(start.get("client"))
        if "timestamp" in start_client:
            self.start_timestamp = _parse_or_keep(start_client["timestamp"], self.start_timestamp)
        if "meter" in start_client:
            self.meter_start = _as_int(start_client["meter"], 0)
        if self.start_rpc.confirmed:
            server = _as_dict(start.get("server"))
            self.transaction_id = _as_int(server.get("transactionId"), -1)
            self.authorized = _as_bool(server.get("authorized"), False)

        stop = _as_dict(state.get("stop"))
        if "rpc" in stop:
            self.stop_rpc._update_from_json(_as_dict(stop["rpc"]))
        stop_client = _as_dict(stop.get("client"))
        if "timestamp" in stop_client:
            self.stop_timestamp = _parse_or_keep(stop_client["timestamp"], self.stop_timestamp)
        if "meter" in stop_client:
            self.meter_stop = _as_int(stop_client["meter"], 0)
        if "idTag" in stop_client:
            self.stop_id_tag = _as_str(stop_client["idTag"], "")
        if "reason" in stop_client:
            self.stop_reason = _as_str(stop_client["reason"], "")

        if "silent" in state:
            self.silent = _as_bool(state["silent"], False)

        logger.debug(
            "Loaded tx %s-%s: idTag %s, start req %s conf %s, stop req %s conf %s%s",
            self.connector_id,
            self.tx_nr,
            self.id_tag,
            self.start_rpc.requested,
            self.start_rpc.confirmed,
            self.stop_rpc.requested,
            self.stop_rpc.confirmed,
            ", silent" if self.silent else "",
        )

    def commit(self) -> bool:
        """Persist this transaction through its store."""
        if self.store is None:
            raise RuntimeError("transaction has no store to commit to")
        return self.store.commit(self)