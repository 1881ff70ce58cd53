"""Charging profiles and schedules, and how a power limit follows from them."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from evsecore.transaction import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

MIN_TIME = datetime(2010, 1, 1, tzinfo=timezone.utc)
MAX_TIME = datetime(2037, 1, 1, tzinfo=timezone.utc)

_DAY = 24 * 3600
_WEEK = 7 * _DAY


class ChargingProfilePurposeType(Enum):
    CHARGE_POINT_MAX_PROFILE = "ChargePointMaxProfile"
    TX_DEFAULT_PROFILE = "TxDefaultProfile"
    TX_PROFILE = "TxProfile"


class ChargingProfileKindType(Enum):
    ABSOLUTE = "Absolute"
    RECURRING = "Recurring"
    RELATIVE = "Relative"


class RecurrencyKindType(Enum):
    NOT_SET = "NOT_SET"
    DAILY = "Daily"
    WEEKLY = "Weekly"


class ChargingRateUnitType(Enum):
    WATT = "W"
    AMP = "A"


def _int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return default


def _float(value: Any, default: float) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    return default


def _str(value: Any, default: str) -> str:
    return value if isinstance(value, str) else default


def _time_or(value: Any, default: datetime) -> datetime:
    try:
        return parse_timestamp(value)
    except ValueError:
        return default


def _seconds(a: datetime, b: datetime) -> int:
    """Whole seconds from b to a."""
    return int((a - b).total_seconds())


def _trunc_mod(a: int, b: int) -> int:
    """Remainder with the sign of the dividend."""
    return a % b if a >= 0 else -((-a) % b)


@dataclass
class ChargingSchedulePeriod:
    """A limit that holds from ``start_period`` seconds after the schedule basis."""

    start_period: int
    limit: float
    number_phases: int = -1

    @classmethod
    def from_json(cls, data: dict) -> "ChargingSchedulePeriod":
        return cls(
            start_period=_int(data.get("startPeriod"), 0),
            limit=_float(data.get("limit"), 0.0),
            number_phases=_int(data.get("numberPhases"), -1),
        )

    def scale(self, factor: float) -> None:
        """Multiply the limit by ``factor``; the result is never negative."""
        self.limit *= factor
        if self.limit < 0.0:
            self.limit *= -1.0

    def add(self, value: float) -> None:
        """Add ``value`` to the limit, clamping at zero."""
        self.limit += value
        if self.limit < 0.0:
            self.limit = 0.0


@dataclass
class ChargingSchedule:
    """A sequence of periods with their limits."""

    duration: int = -1
    start_schedule: datetime = MIN_TIME
    charging_rate_unit: ChargingRateUnitType = ChargingRateUnitType.WATT
    periods: list[ChargingSchedulePeriod] = field(default_factory=list)
    min_charging_rate: float = -1.0
    kind: ChargingProfileKindType = ChargingProfileKindType.ABSOLUTE
    recurrency: RecurrencyKindType = RecurrencyKindType.NOT_SET

    @classmethod
    def from_json(
        cls,
        data: dict,
        kind: ChargingProfileKindType,
        recurrency: RecurrencyKindType,
    ) -> "ChargingSchedule":
        unit_text = _str(data.get("chargingRateUnit"), "__Invalid")
        unit = (
            ChargingRateUnitType.AMP
            if unit_text[:1] in ("a", "A")
            else ChargingRateUnitType.WATT
        )
        raw_periods = data.get("chargingSchedulePeriod")
        periods = [
            ChargingSchedulePeriod.from_json(p)
            for p in (raw_periods if isinstance(raw_periods, list) else [])
            if isinstance(p, dict)
        ]
        periods.sort(key=lambda p: p.start_period)
        return cls(
            duration=_int(data.get("duration"), -1),
            start_schedule=_time_or(data.get("startSchedule"), MIN_TIME),
            charging_rate_unit=unit,
            periods=periods,
            min_charging_rate=_float(data.get("minChargingRate"), -1.0),
            kind=kind,
            recurrency=recurrency,
        )

    @classmethod
    def empty(cls, start: datetime, duration: int) -> "ChargingSchedule":
        """An empty but valid absolute schedule."""
        return cls(duration=duration, start_schedule=start)

    def copy(self) -> "ChargingSchedule":
        periods = sorted((replace(p) for p in self.periods), key=lambda p: p.start_period)
        return replace(self, periods=periods)

    def inference_limit(
        self, t: datetime, start_of_charging: datetime
    ) -> tuple[float | None, datetime]:
        """Return the limit at ``t`` (None if undefined) and when it changes next."""
        next_change = MAX_TIME
        if self.kind is ChargingProfileKindType.ABSOLUTE:
            if self.start_schedule > t:
                return None, self.start_schedule
            if self.start_schedule > MIN_TIME:
                basis = self.start_schedule
            elif MIN_TIME < start_of_charging < t:
                basis = start_of_charging
            else:
                logger.error(
                    "Absolute profile, but neither startSchedule, nor start of charging are set"
                )
                return None, next_change
        elif self.kind is ChargingProfileKindType.RECURRING:
            if self.recurrency is RecurrencyKindType.WEEKLY:
                cycle = _WEEK
            else:
                if self.recurrency is not RecurrencyKindType.DAILY:
                    logger.error("Recurring profile without recurrency kind, assume 'Daily'")
                cycle = _DAY
            offset = _trunc_mod(_seconds(t, self.start_schedule), cycle)
            basis = t - timedelta(seconds=offset)
            next_change = basis + timedelta(seconds=cycle)
        else:
            if start_of_charging > t:
                return None, next_change
            basis = start_of_charging

        if t < basis:
            logger.error("t must be >= time basis")
            return None, next_change

        t_to_basis = _seconds(t, basis)

        if self.duration > 0:
            if t_to_basis >= self.duration:
                return None, next_change
            if _seconds(next_change, basis) > self.duration:
                next_change = basis + timedelta(seconds=self.duration)

        limit = -1.0
        for period in self.periods:
            if period.start_period > t_to_basis:
                next_change = basis + timedelta(seconds=period.start_period)
                break
            limit = period.limit

        if limit >= 0.0:
            return max(limit, self.min_charging_rate), next_change
        return None, next_change

    def add_period(self, period: ChargingSchedulePeriod) -> bool:
        """Append a period; False if it starts at or after the duration."""
        if period.start_period >= self.duration:
            return False
        self.periods.append(period)
        return True

    def scale(self, factor: float) -> None:
        for period in self.periods:
            period.scale(factor)

    def translate(self, offset: float) -> None:
        for period in self.periods:
            period.add(offset)

    def to_json(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if self.duration >= 0:
            payload["duration"] = self.duration
        payload["startSchedule"] = format_timestamp(self.start_schedule)
        payload["chargingRateUnit"] = self.charging_rate_unit.value
        entries = []
        for period in self.periods:
            entry: dict[str, Any] = {"startPeriod": period.start_period, "limit": period.limit}
            if period.number_phases >= 0:
                entry["numberPhases"] = period.number_phases
            entries.append(entry)
        payload["chargingSchedulePeriod"] = entries
        if self.min_charging_rate >= 0:
            payload["minChargeRate"] = self.min_charging_rate
        return payload


_PURPOSES = {p.value: p for p in ChargingProfilePurposeType}
_KINDS = {k.value: k for k in ChargingProfileKindType}


@dataclass
class ChargingProfile:
    """A charging profile as set by the central system."""

    charging_profile_id: int = -1
    transaction_id: int = -1
    stack_level: int = 0
    purpose: ChargingProfilePurposeType = ChargingProfilePurposeType.TX_PROFILE
    kind: ChargingProfileKindType = ChargingProfileKindType.RELATIVE
    recurrency: RecurrencyKindType = RecurrencyKindType.NOT_SET
    valid_from: datetime = MIN_TIME
    valid_to: datetime = MIN_TIME
    schedule: ChargingSchedule = field(default_factory=ChargingSchedule)

    @classmethod
    def from_json(cls, data: dict) -> "ChargingProfile":
        purpose = _PURPOSES.get(
            _str(data.get("chargingProfilePurpose"), "Invalid"),
            ChargingProfilePurposeType.TX_PROFILE,
        )
        kind = _KINDS.get(
            _str(data.get("chargingProfileKind"), "Invalid"),
            ChargingProfileKindType.RELATIVE,
        )
        recurrency_text = _str(data.get("recurrencyKind"), "Invalid")
        if recurrency_text == "Daily":
            recurrency = RecurrencyKindType.DAILY
        elif recurrency_text == "Weekly":
            recurrency = RecurrencyKindType.WEEKLY
        else:
            recurrency = RecurrencyKindType.NOT_SET

        schedule_json = data.get("chargingSchedule")
        schedule = ChargingSchedule.from_json(
            schedule_json if isinstance(schedule_json, dict) else {}, kind, recurrency
        )
        profile = cls(
            charging_profile_id=_int(data.get("chargingProfileId"), -1),
            transaction_id=_int(data.get("transactionId"), -1),
            stack_level=_int(data.get("stackLevel"), 0),
            purpose=purpose,
            kind=kind,
            recurrency=recurrency,
            valid_from=_time_or(data.get("validFrom"), MIN_TIME),
            valid_to=_time_or(data.get("validTo"), MIN_TIME),
            schedule=schedule,
        )
        logger.debug(
            "Deserialized charging profile id=%s, purpose=%s, recurrency=%s",
            profile.charging_profile_id,
            purpose.value,
            recurrency.value,
        )
        return profile

    def inference_limit(
        self, t: datetime, start_of_charging: datetime = MAX_TIME
    ) -> tuple[float | None, datetime]:
        """Return the limit at ``t`` (None if undefined) and when it changes next."""
        if t > self.valid_to and self.valid_to > MIN_TIME:
            return None, MAX_TIME
        if t < self.valid_from:
            return None, self.valid_from
        return self.schedule.inference_limit(t, start_of_charging)

    def check_transaction_assignment(self, tx_id: int, profile_id: int) -> bool:
        """Check whether this profile applies to a transaction or remote profile id."""
        if self.purpose is not ChargingProfilePurposeType.TX_PROFILE:
            logger.error("assignment only exists for TxProfiles")
            return True
        if tx_id <= 0 and profile_id < 0:
            return True
        if self.charging_profile_id >= 0 and profile_id >= 0:
            return self.charging_profile_id == profile_id
        if self.transaction_id > 0 and tx_id > 0:
            return self.transaction_id == tx_id
        logger.debug("Neither txIds nor profileIDs apply")
        return True