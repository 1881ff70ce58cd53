"""Stop-transaction meter data kept in memory and, optionally, on storage."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import weakref
from pathlib import Path

from evsecore.meter_value import MeterValue, MeterValueBuilder
from evsecore.transaction import Transaction

logger = logging.getLogger(__name__)

MAX_STOPTXDATA_LEN = 4
_MISSES_LIMIT = 3


def _sd_path(directory: Path, connector_id: int, tx_nr: int, index: int) -> Path:
    return directory / f"sd-{connector_id}-{tx_nr}-{index}.jsn"


def _store_json(path: Path, data: dict) -> None:
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=".jsn")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(data, handle)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def _load_json(path: Path) -> dict | None:
    try:
        with path.open(encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, json.JSONDecodeError):
        return None
    return data if isinstance(data, dict) else None


class TransactionMeterData:
    """Meter values recorded for the StopTransaction of one transaction.

    At most ``MAX_STOPTXDATA_LEN`` values are kept on storage; once that many
    are stored, each new value replaces the latest one. After ``finalize`` the
    record is read-only.
    """

    def __init__(
        self,
        connector_id: int,
        tx_nr: int,
        directory: str | os.PathLike | None = None,
    ) -> None:
        self.connector_id = connector_id
        self.tx_nr = tx_nr
        self.directory = Path(directory) if directory is not None else None
        self._mv_count = 0
        self._finalized = False
        self._tx_data: list[MeterValue] = []
        if self.directory is None:
            logger.debug("volatile mode")
        else:
            self.directory.mkdir(parents=True, exist_ok=True)

    @property
    def paths_count(self) -> int:
        """Number of storage indexes spanned by this record."""
        return self._mv_count

    @property
    def finalized(self) -> bool:
        return self._finalized

    @property
    def tx_data(self) -> tuple[MeterValue, ...]:
        return tuple(self._tx_data)

    def finalize(self) -> None:
        """Make the record read-only."""
        self._finalized = True

    def _path(self, index: int) -> Path:
        assert self.directory is not None
        return _sd_path(self.directory, self.connector_id, self.tx_nr, index)

    def add_tx_data(self, meter_value: MeterValue) -> None:
        """Append a meter value, replacing the latest one if the record is full.

        Raises RuntimeError if the record is finalized and ValueError if the
        meter value is missing or cannot be serialized yet.
        """
        if self._finalized:
            raise RuntimeError("meter data is finalized and immutable")
        if meter_value is None:
            raise ValueError("no meter value given")

        replace_last = self._mv_count >= MAX_STOPTXDATA_LEN

        if self.directory is not None:
            index = self._mv_count - 1 if replace_last else self._mv_count
            doc = meter_value.to_json()
            if doc is None:
                raise ValueError("meter value not ready yet")
            _store_json(self._path(index), doc)
            if not replace_last:
                self._mv_count += 1

        if replace_last and self._tx_data:
            self._tx_data[-1] = meter_value
            logger.debug("updated latest sd")
        else:
            self._tx_data.append(meter_value)
            logger.debug("added sd")

    def retrieve_stop_tx_data(self) -> list[MeterValue]:
        """Finalize the record and hand out its meter values.

        Raises RuntimeError if the data has already been retrieved.
        """
        if self._finalized:
            raise RuntimeError("stop transaction data can only be retrieved once")
        self.finalize()
        data, self._tx_data = self._tx_data, []
        return data

    def restore(self, builder: MeterValueBuilder) -> bool:
        """Load stored meter values; False if the stored record is corrupted."""
        if self.directory is None:
            logger.debug("No storage - nothing to restore")
            return True

        misses = 0
        while misses < _MISSES_LIMIT:
            doc = _load_json(self._path(self._mv_count))
            if doc is None:
                misses += 1
                self._mv_count += 1
                continue
            try:
                meter_value = builder.deserialize_sample(doc)
            except ValueError:
                logger.error("Deserialization error")
                misses += 1
                self._mv_count += 1
                continue
            if len(self._tx_data) >= MAX_STOPTXDATA_LEN:
                logger.error("corrupted memory")
                return False
            self._tx_data.append(meter_value)
            self._mv_count += 1
            misses = 0

        logger.debug("Restored %d meter values", len(self._tx_data))
        return True


class MeterStore:
    """Hands out the meter data record of each transaction.

    Records are cached only while referenced elsewhere. With ``directory``
    set to None nothing is written to storage.
    """

    def __init__(self, directory: str | os.PathLike | None = None) -> None:
        self.directory = Path(directory) if directory is not None else None
        self._cache: list[weakref.ref[TransactionMeterData]] = []
        if self.directory is None:
            logger.debug("volatile mode")
        else:
            self.directory.mkdir(parents=True, exist_ok=True)

    def _find(self, connector_id: int, tx_nr: int) -> TransactionMeterData | None:
        for ref in self._cache:
            data = ref()
            if data is not None and data.connector_id == connector_id and data.tx_nr == tx_nr:
                return data
        return None

    def _prune(self) -> None:
        self._cache = [ref for ref in self._cache if ref() is not None]

    def get_tx_meter_data(
        self, builder: MeterValueBuilder, transaction: Transaction | None
    ) -> TransactionMeterData | None:
        """Return the record of a transaction; None for silent or no transaction."""
        if transaction is None or transaction.silent:
            return None
        connector_id = transaction.connector_id
        tx_nr = transaction.tx_nr

        cached = self._find(connector_id, tx_nr)
        if cached is not None:
            return cached

        self._prune()
        data = TransactionMeterData(connector_id, tx_nr, self.directory)

        if self.directory is not None and _sd_path(self.directory, connector_id, tx_nr, 0).exists():
            if not data.restore(builder):
                self.remove(connector_id, tx_nr)
                logger.error("removed corrupted tx entries")

        self._cache.append(weakref.ref(data))
        logger.debug("Added txNr %s, now holding %d txs", tx_nr, len(self._cache))
        return data

    def remove(self, connector_id: int, tx_nr: int) -> bool:
        """Finalize the record of a transaction and delete its stored values."""
        mv_count = 0
        cached = self._find(connector_id, tx_nr)
        if cached is not None:
            mv_count = cached.paths_count
            cached.finalize()

        success = True
        if self.directory is not None:
            if mv_count == 0:
                misses = 0
                index = 0
                while misses < _MISSES_LIMIT:
                    exists = _sd_path(self.directory, connector_id, tx_nr, index).exists()
                    index += 1
                    if exists:
                        mv_count = index
                        misses = 0
                    else:
                        misses += 1

            logger.debug("remove %d mvs for txNr %s", mv_count, tx_nr)
            for index in reversed(range(mv_count)):
                try:
                    _sd_path(self.directory, connector_id, tx_nr, index).unlink(missing_ok=True)
                except OSError:
                    success = False

        self._prune()
        if success:
            logger.debug("Removed meter values for cId %s, txNr %s", connector_id, tx_nr)
        else:
            logger.debug("corrupted storage")
        return success