"""Timestamped groups of sampled values and the builder that takes them."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any

from evsecore.sampled_value import ReadingContext, SampledValue, SampledValueSampler
from evsecore.transaction import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)


class MeterValue:
    """Sampled values taken at one point in time."""

    def __init__(
        self, timestamp: datetime, sampled_values: list[SampledValue] | None = None
    ) -> None:
        self.timestamp = timestamp
        self.sampled_values: list[SampledValue] = list(sampled_values or [])

    def add_sampled_value(self, sample: SampledValue) -> None:
        self.sampled_values.append(sample)

    def to_json(self) -> dict[str, Any] | None:
        """Serialize into an OCPP MeterValue object; None if a value is not ready."""
        entries = []
        for sample in self.sampled_values:
            entry = sample.to_json()
            if entry is None:
                return None
            entries.append(entry)
        return {"timestamp": format_timestamp(self.timestamp), "sampledValue": entries}


class MeterValueBuilder:
    """Takes samples from the samplers named by a comma-separated selection.

    ``samplers`` is shared with its owner and may grow later. ``select`` is
    either the selection string or a callable returning the current one.
    """

    def __init__(
        self,
        samplers: Sequence[SampledValueSampler],
        select: str | Callable[[], str],
    ) -> None:
        self.samplers = samplers
        self._select = select if callable(select) else (lambda: select)
        self._mask: list[bool] = []
        self._observed: str | None = None
        self._update_observed_samplers()

    def _update_observed_samplers(self) -> None:
        selection = self._select() or ""
        self._observed = selection
        wanted = {entry for entry in selection.split(",") if entry}
        self._mask = [s.properties.measurand in wanted for s in self.samplers]

    def take_sample(self, timestamp: datetime, context: ReadingContext) -> MeterValue | None:
        """Sample all selected measurands; None if nothing is selected."""
        if self._observed != self._select() or len(self._mask) != len(self.samplers):
            logger.debug("Updating observed samplers due to config change or samplers added")
            self._update_observed_samplers()

        if not any(self._mask):
            return None

        sample = MeterValue(timestamp)
        for sampler, selected in zip(self.samplers, self._mask):
            if selected:
                sample.add_sampled_value(sampler.take_value(context))
        return sample

    def deserialize_sample(self, mv_json: dict) -> MeterValue:
        """Rebuild a meter value from its JSON form.

        Sampled values without a sampler of identical properties are dropped.
        Raises ValueError if the timestamp is missing or invalid.
        """
        timestamp = parse_timestamp(mv_json.get("timestamp", "Invalid"))
        sample = MeterValue(timestamp)

        sampled = mv_json.get("sampledValue", [])
        if not isinstance(sampled, list):
            sampled = []
        for sv_json in sampled:
            if not isinstance(sv_json, dict):
                continue
            for sampler in self.samplers:
                props = sampler.properties
                if (
                    props.measurand == sv_json.get("measurand", "")
                    and props.format == sv_json.get("format", "")
                    and props.phase == sv_json.get("phase", "")
                    and props.location == sv_json.get("location", "")
                    and props.unit == sv_json.get("unit", "")
                ):
                    sample.add_sampled_value(sampler.deserialize_value(sv_json))
                    break
        return sample