"""JSON-backed ledger store.

The :class:`Ledger` is an in-memory arena of entities keyed by id:
accounts, transactions, balance snapshots, holding snapshots, securities
and import batches.  Relationships are plain id fields, so cascading a
batch delete or finding an account's transactions is a filter over one
dict.

On disk the ledger is a single JSON document::

    {
        "accounts": [...],
        "transactions": [...],
        "balances": [...],
        "holdings": [...],
        "securities": [...],
        "batches": [...]
    }

Decimals are written as strings and dates as ISO strings.  Saves go to a
temporary file in the same directory followed by :func:`os.replace`, so a
reader never sees a half-written ledger.

Mutations happen inside :meth:`Ledger.unit_of_work`, which serializes
writers with a re-entrant lock and restores the previous in-memory state
when the block raises or the save fails.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import fields
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Iterator

from statement_importer.errors import StorageCommitFailed
from statement_importer.models import (
    Account,
    AccountType,
    BalanceSnapshot,
    HoldingSnapshot,
    ImportBatch,
    LoanTerms,
    Security,
    Transaction,
    TransactionKind,
)

logger = logging.getLogger(__name__)

_COLLECTIONS: dict[str, type] = {
    "accounts": Account,
    "transactions": Transaction,
    "balances": BalanceSnapshot,
    "holdings": HoldingSnapshot,
    "securities": Security,
    "batches": ImportBatch,
}

_DECIMAL_FIELDS = frozenset({
    "amount", "quantity", "price", "fees", "original_amount", "balance",
    "interest_rate_apr", "market_value", "apr", "payment_amount",
})
_DATE_FIELDS = frozenset({"date_posted", "original_date", "as_of_date"})
_DATETIME_FIELDS = frozenset({"created_at"})


class Ledger:
    """In-memory arena of ledger entities with atomic JSON persistence.

    Args:
        path: JSON file backing the ledger, or ``None`` for a purely
            in-memory ledger (saves are no-ops).
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path
        self.accounts: dict[str, Account] = {}
        self.transactions: dict[str, Transaction] = {}
        self.balances: dict[str, BalanceSnapshot] = {}
        self.holdings: dict[str, HoldingSnapshot] = {}
        self.securities: dict[str, Security] = {}
        self.batches: dict[str, ImportBatch] = {}
        self._lock = threading.RLock()

    # -- persistence -------------------------------------------------------

    @classmethod
    def load(cls, path: Path) -> Ledger:
        """Load a ledger from *path*.  A missing file yields an empty ledger.

        Raises:
            StorageCommitFailed: If the file exists but cannot be read or
                decoded.
        """
        ledger = cls(path)
        if not path.is_file():
            logger.debug("No ledger at %s, starting empty", path)
            return ledger
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageCommitFailed(f"Could not read ledger {path}: {exc}") from exc

        for name, cls_ in _COLLECTIONS.items():
            target = getattr(ledger, name)
            for item in raw.get(name, []):
                entity = _decode(cls_, item)
                target[entity.id] = entity
        logger.debug(
            "Loaded ledger %s: %d accounts, %d transactions",
            path, len(ledger.accounts), len(ledger.transactions),
        )
        return ledger

    def save(self) -> None:
        """Write the ledger atomically.

        Raises:
            StorageCommitFailed: If the file cannot be written.
        """
        if self.path is None:
            return
        payload = {
            name: [_encode(e) for e in getattr(self, name).values()]
            for name in _COLLECTIONS
        }
        text = json.dumps(payload, indent=2, ensure_ascii=False)
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=self.path.parent, suffix=".tmp", delete=False
            ) as fh:
                tmp_name = fh.name
                fh.write(text)
            os.replace(tmp_name, self.path)
        except OSError as exc:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StorageCommitFailed(f"Could not save ledger {self.path}: {exc}") from exc
        logger.debug("Saved ledger %s", self.path)

    @contextmanager
    def unit_of_work(self) -> Iterator[Ledger]:
        """Run a block of mutations as one atomic commit.

        The block runs under the ledger lock.  On normal exit the ledger is
        saved.  If the block raises, or the save fails, the in-memory state
        is restored to what it was on entry and the exception propagates.
        """
        with self._lock:
            snapshot = self._snapshot()
            try:
                yield self
                self.save()
            except Exception:
                self._restore(snapshot)
                logger.debug("Unit of work rolled back")
                raise

    def _snapshot(self) -> dict[str, dict]:
        return {name: copy.deepcopy(getattr(self, name)) for name in _COLLECTIONS}

    def _restore(self, snapshot: dict[str, dict]) -> None:
        for name, value in snapshot.items():
            setattr(self, name, value)

    # -- mutation ----------------------------------------------------------

    def add(self, entity) -> None:
        """Insert or overwrite *entity* in its collection."""
        self._collection_for(entity)[entity.id] = entity

    def remove(self, entity) -> None:
        self._collection_for(entity).pop(entity.id, None)

    def fetch_or_create_security(self, symbol: str) -> Security:
        """Return the security with *symbol*, creating it when missing."""
        for security in self.securities.values():
            if security.symbol == symbol:
                return security
        security = Security(symbol=symbol)
        self.add(security)
        return security

    def _collection_for(self, entity) -> dict:
        for name, cls_ in _COLLECTIONS.items():
            if isinstance(entity, cls_):
                return getattr(self, name)
        raise TypeError(f"Not a ledger entity: {type(entity).__name__}")

    # -- queries -----------------------------------------------------------

    def transactions_for_account(self, account_id: str) -> list[Transaction]:
        return [t for t in self.transactions.values() if t.account_id == account_id]

    def balances_for_account(self, account_id: str) -> list[BalanceSnapshot]:
        return [b for b in self.balances.values() if b.account_id == account_id]

    def holdings_for_account(self, account_id: str) -> list[HoldingSnapshot]:
        return [h for h in self.holdings.values() if h.account_id == account_id]

    def batch_transactions(self, batch_id: str) -> list[Transaction]:
        return [t for t in self.transactions.values() if t.import_batch_id == batch_id]

    def batch_balances(self, batch_id: str) -> list[BalanceSnapshot]:
        return [b for b in self.balances.values() if b.import_batch_id == batch_id]

    def batch_holdings(self, batch_id: str) -> list[HoldingSnapshot]:
        return [h for h in self.holdings.values() if h.import_batch_id == batch_id]

    def account_is_empty(self, account_id: str) -> bool:
        """Return True when no transaction, balance or holding references the account."""
        return not (
            any(t.account_id == account_id for t in self.transactions.values())
            or any(b.account_id == account_id for b in self.balances.values())
            or any(h.account_id == account_id for h in self.holdings.values())
        )

    def security_symbol(self, security_id: str) -> str | None:
        security = self.securities.get(security_id)
        return security.symbol if security else None


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _encode_value(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, LoanTerms):
        return {f.name: _encode_value(getattr(value, f.name)) for f in fields(value)}
    return value


def _encode(entity) -> dict:
    return {f.name: _encode_value(getattr(entity, f.name)) for f in fields(entity)}


def _decode_value(name: str, value):
    if value is None:
        return None
    if name in _DECIMAL_FIELDS:
        return Decimal(value)
    if name in _DATE_FIELDS:
        return date.fromisoformat(value)
    if name in _DATETIME_FIELDS:
        return datetime.fromisoformat(value)
    if name == "type":
        return AccountType(value)
    if name == "kind":
        return TransactionKind(value)
    if name == "loan_terms":
        return LoanTerms(**{k: _decode_value(k, v) for k, v in value.items()})
    return value


def _decode(cls_: type, raw: dict):
    known = {f.name for f in fields(cls_)}
    kwargs = {k: _decode_value(k, v) for k, v in raw.items() if k in known}
    return cls_(**kwargs)
