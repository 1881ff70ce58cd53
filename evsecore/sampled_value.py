"""Single meter readings, their properties and the samplers that take them."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

_INT_PREFIX = re.compile(r"\s*([+-]?\d+)")
_FLOAT_PREFIX = re.compile(r"\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


class ReadingContext(Enum):
    """Reason why a value was sampled."""

    INTERRUPTION_BEGIN = "Interruption.Begin"
    INTERRUPTION_END = "Interruption.End"
    OTHER = "Other"
    SAMPLE_CLOCK = "Sample.Clock"
    SAMPLE_PERIODIC = "Sample.Periodic"
    TRANSACTION_BEGIN = "Transaction.Begin"
    TRANSACTION_END = "Transaction.End"
    TRIGGER = "Trigger"
    NOT_SET = "NOT_SET"


def serialize_reading_context(context: ReadingContext) -> str | None:
    """Return the wire name of a reading context, or None if it is not set."""
    if context is ReadingContext.NOT_SET:
        return None
    return context.value


def deserialize_reading_context(text: str | None) -> ReadingContext:
    """Parse a wire name; unknown or missing names give ``NOT_SET``."""
    if text is None:
        logger.error("Invalid argument")
        return ReadingContext.NOT_SET
    try:
        return ReadingContext(text)
    except ValueError:
        logger.error("ReadingContext not specified %.10s", text)
        return ReadingContext.NOT_SET


def _parse_int_prefix(text: str) -> int:
    match = _INT_PREFIX.match(text)
    return int(match.group(1)) if match else 0


def _parse_float_prefix(text: str) -> float:
    match = _FLOAT_PREFIX.match(text)
    return float(match.group(1)) if match else 0.0


@dataclass(frozen=True)
class SampledValueProperties:
    """Descriptive attributes shared by all values of one sampler."""

    format: str = ""
    measurand: str = ""
    phase: str = ""
    location: str = ""
    unit: str = ""


@dataclass
class SampledValue:
    """One reading of a meter, either an int or a float."""

    properties: SampledValueProperties
    context: ReadingContext
    value: int | float

    def __bool__(self) -> bool:
        return True

    def serialize_value(self) -> str:
        """Return the value as it is sent to the server."""
        if isinstance(self.value, int):
            return str(self.value)
        return f"{float(self.value):4.9f}"

    def to_int(self) -> int:
        """Return the value truncated to an integer."""
        return int(self.value)

    def to_json(self) -> dict[str, Any] | None:
        """Serialize into an OCPP SampledValue object; None if there is no value."""
        value = self.serialize_value()
        if not value:
            return None
        payload: dict[str, Any] = {"value": value}
        context = serialize_reading_context(self.context)
        if context is not None:
            payload["context"] = context
        props = self.properties
        for key, field_value in (
            ("format", props.format),
            ("measurand", props.measurand),
            ("phase", props.phase),
            ("location", props.location),
            ("unit", props.unit),
        ):
            if field_value:
                payload[key] = field_value
        return payload


class SampledValueSampler:
    """Reads values of one measurand through a callback.

    ``sampler`` is called with the reading context and returns the current
    value; ``value_type`` is ``int`` or ``float``.
    """

    def __init__(
        self,
        properties: SampledValueProperties,
        sampler: Callable[[ReadingContext], int | float],
        value_type: type = float,
    ) -> None:
        if value_type not in (int, float):
            raise ValueError(f"unsupported value type: {value_type!r}")
        self.properties = properties
        self.sampler = sampler
        self.value_type = value_type

    def take_value(self, context: ReadingContext) -> SampledValue:
        """Sample the meter now."""
        return SampledValue(self.properties, context, self.value_type(self.sampler(context)))

    def deserialize_value(self, sv_json: dict) -> SampledValue:
        """Rebuild a value of this sampler from its JSON form."""
        context_text = sv_json.get("context", "NOT_SET")
        if not isinstance(context_text, str):
            context_text = "NOT_SET"
        raw = sv_json.get("value", "")
        if not isinstance(raw, str):
            raw = ""
        if self.value_type is int:
            value: int | float = _parse_int_prefix(raw)
        else:
            value = _parse_float_prefix(raw)
        return SampledValue(self.properties, deserialize_reading_context(context_text), value)