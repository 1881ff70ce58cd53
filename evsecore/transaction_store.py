"""Persistent ring buffer of transactions, one per connector."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import weakref
from pathlib import Path

from evsecore.transaction import Transaction

logger = logging.getLogger(__name__)

MAX_TX_CNT = 100000
TX_RECORD_SIZE = 4  # number of transactions held on storage
META_FILENAME = "txstore.jsn"


def _write_json_atomic(path: Path, data: dict) -> None:
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=".jsn")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(data, handle)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def _read_json(path: Path) -> dict:
    try:
        with path.open(encoding="utf-8") as handle:
            data = json.load(handle)
    except json.JSONDecodeError as exc:
        raise ValueError(f"corrupted JSON file {path}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"corrupted JSON file {path}: not an object")
    return data


class ConnectorTransactionStore:
    """Transactions of one connector, kept as a numbered ring buffer.

    With ``directory`` set to None the store works in volatile mode: nothing
    is written and transactions live only as long as someone references them.
    """

    def __init__(self, connector_id: int, directory: str | os.PathLike | None = None) -> None:
        self.connector_id = connector_id
        self.directory = Path(directory) if directory is not None else None
        self._transactions: list[weakref.ref[Transaction]] = []
        self._begin_key = f"AO_txBegin_{connector_id}"
        self._end_key = f"AO_txEnd_{connector_id}"
        self._tx_begin = 0
        self._tx_end = 0
        if self.directory is not None:
            self.directory.mkdir(parents=True, exist_ok=True)
            self._load_meta()

    @property
    def _meta_path(self) -> Path | None:
        return self.directory / META_FILENAME if self.directory is not None else None

    def _load_meta(self) -> None:
        path = self._meta_path
        if path is None or not path.exists():
            return
        meta = _read_json(path)
        for key in (self._begin_key, self._end_key):
            value = meta.get(key, 0)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ValueError(f"corrupted transaction store entry {key}: {value!r}")
        self._tx_begin = meta.get(self._begin_key, 0)
        self._tx_end = meta.get(self._end_key, 0)

    def _save_meta(self) -> None:
        path = self._meta_path
        if path is None:
            return
        meta = _read_json(path) if path.exists() else {}
        meta[self._begin_key] = self._tx_begin
        meta[self._end_key] = self._tx_end
        _write_json_atomic(path, meta)

    def _tx_path(self, tx_nr: int) -> Path | None:
        if self.directory is None:
            return None
        return self.directory / f"tx-{self.connector_id}-{tx_nr}.jsn"

    def _prune_cache(self) -> None:
        self._transactions = [ref for ref in self._transactions if ref() is not None]

    def _cache(self, transaction: Transaction) -> None:
        self._prune_cache()
        self._transactions.append(weakref.ref(transaction))

    @property
    def tx_begin(self) -> int:
        return self._tx_begin

    @tx_begin.setter
    def tx_begin(self, tx_nr: int) -> None:
        self._tx_begin = tx_nr
        self._save_meta()

    @property
    def tx_end(self) -> int:
        return self._tx_end

    @tx_end.setter
    def tx_end(self, tx_nr: int) -> None:
        self._tx_end = tx_nr
        self._save_meta()

    def get_transaction(self, tx_nr: int) -> Transaction | None:
        """Return the transaction with this number, or None if unknown.

        Raises ValueError if the stored record is corrupted.
        """
        if self._transactions:
            latest = self._transactions[-1]()
            if latest is not None and latest.tx_nr == tx_nr:
                return latest

        self._prune_cache()
        for ref in self._transactions:
            cached = ref()
            if cached is not None and cached.tx_nr == tx_nr:
                return cached

        path = self._tx_path(tx_nr)
        if path is None:
            logger.debug("no storage: tx %s-%s unknown", self.connector_id, tx_nr)
            return None
        if not path.exists():
            logger.debug("%s-%s does not exist", self.connector_id, tx_nr)
            return None

        state = _read_json(path)
        transaction = Transaction(self, self.connector_id, tx_nr)
        transaction.update_from_json(state)
        self._cache(transaction)
        return transaction

    def create_transaction(self, silent: bool = False) -> Transaction | None:
        """Create the next transaction; None if the record is full.

        A silent transaction is created even when the record is full.
        """
        if len(self) >= TX_RECORD_SIZE and not silent:
            return None

        transaction = Transaction(self, self.connector_id, self._tx_end, silent)
        self.tx_end = (self._tx_end + 1) % MAX_TX_CNT
        self.commit(transaction)
        self._cache(transaction)
        return transaction

    def get_latest_transaction(self) -> Transaction | None:
        """Return the most recently created transaction, if still known."""
        latest = (self._tx_end + MAX_TX_CNT - 1) % MAX_TX_CNT
        return self.get_transaction(latest)

    def commit(self, transaction: Transaction) -> bool:
        """Write the transaction to storage."""
        path = self._tx_path(transaction.tx_nr)
        if path is None:
            logger.debug("no storage: nothing to commit")
            return True
        _write_json_atomic(path, transaction.to_json())
        return True

    def remove(self, tx_nr: int) -> bool:
        """Delete the stored record of a transaction."""
        path = self._tx_path(tx_nr)
        if path is None:
            logger.debug("no storage: nothing to remove")
            return True
        if not path.exists():
            logger.debug("%s already removed", path)
            return True
        logger.debug("remove %s", path)
        path.unlink()
        return True

    def __len__(self) -> int:
        return (self._tx_end + MAX_TX_CNT - self._tx_begin) % MAX_TX_CNT


class TransactionStore:
    """Transaction stores for all connectors of the charge point."""

    def __init__(self, connector_count: int, directory: str | os.PathLike | None = None) -> None:
        self.connectors = [
            ConnectorTransactionStore(connector_id, directory)
            for connector_id in range(connector_count)
        ]

    def _connector(self, connector_id: int) -> ConnectorTransactionStore:
        if not 0 <= connector_id < len(self.connectors):
            raise ValueError(f"invalid connector id: {connector_id}")
        return self.connectors[connector_id]

    def get_latest_transaction(self, connector_id: int) -> Transaction | None:
        return self._connector(connector_id).get_latest_transaction()

    def commit(self, transaction: Transaction) -> bool:
        if transaction is None:
            raise ValueError("no transaction to commit")
        return self._connector(transaction.connector_id).commit(transaction)

    def get_transaction(self, connector_id: int, tx_nr: int) -> Transaction | None:
        return self._connector(connector_id).get_transaction(tx_nr)

    def create_transaction(self, connector_id: int, silent: bool = False) -> Transaction | None:
        return self._connector(connector_id).create_transaction(silent)

    def remove(self, connector_id: int, tx_nr: int) -> bool:
        return self._connector(connector_id).remove(tx_nr)

    def get_tx_begin(self, connector_id: int) -> int:
        return self._connector(connector_id).tx_begin

    def get_tx_end(self, connector_id: int) -> int:
        return self._connector(connector_id).tx_end

    def set_tx_begin(self, connector_id: int, tx_nr: int) -> None:
        self._connector(connector_id).tx_begin = tx_nr

    def set_tx_end(self, connector_id: int, tx_nr: int) -> None:
        self._connector(connector_id).tx_end = tx_nr

    def size(self, connector_id: int) -> int:
        return len(self._connector(connector_id))