"""Import batch maintenance: listing and cascading deletes."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from statement_importer.errors import StatementImportError
from statement_importer.events import EventBus, notify_changed
from statement_importer.models import ImportBatch, TransactionKind
from statement_importer.store import Ledger

logger = logging.getLogger(__name__)


@dataclass
class BatchSummary:
    """A batch plus the number of records it owns."""

    batch: ImportBatch
    transactions: int
    balances: int
    holdings: int


def list_batches(ledger: Ledger) -> list[BatchSummary]:
    """Return every batch with its record counts, oldest first."""
    return [
        BatchSummary(
            batch=batch,
            transactions=len(ledger.batch_transactions(batch.id)),
            balances=len(ledger.batch_balances(batch.id)),
            holdings=len(ledger.batch_holdings(batch.id)),
        )
        for batch in sorted(ledger.batches.values(), key=lambda b: b.created_at)
    ]


def delete_batch(ledger: Ledger, batch_id: str, events: EventBus | None = None) -> int:
    """Delete a batch together with its transactions, balances and holdings.

    Accounts that referenced the batch and are left with no transactions,
    balances or holdings are deleted too.

    Returns:
        The number of accounts deleted.

    Raises:
        StatementImportError: If *batch_id* is unknown.
    """
    with ledger.unit_of_work():
        batch = ledger.batches.get(batch_id)
        if batch is None:
            raise StatementImportError(f"Unknown batch id: {batch_id}")
        candidates = _cascade(ledger, batch)
        deleted = 0
        for account_id in sorted(candidates):
            account = ledger.accounts.get(account_id)
            if account is not None and ledger.account_is_empty(account_id):
                logger.info("Deleting empty account %r after batch deletion", account.name)
                ledger.remove(account)
                deleted += 1
    notify_changed(events)
    return deleted


def delete_all_batches(ledger: Ledger, events: EventBus | None = None) -> int:
    """Delete every batch and its records.  Accounts are kept.

    Returns:
        The number of batches deleted.
    """
    with ledger.unit_of_work():
        batches = list(ledger.batches.values())
        for batch in batches:
            _cascade(ledger, batch)
    logger.info("Deleted %d batch(es)", len(batches))
    notify_changed(events)
    return len(batches)


def _cascade(ledger: Ledger, batch: ImportBatch) -> set[str]:
    """Remove *batch* and its children; return the account ids they referenced."""
    children = (
        ledger.batch_transactions(batch.id)
        + ledger.batch_balances(batch.id)
        + ledger.batch_holdings(batch.id)
    )
    account_ids = {c.account_id for c in children}
    for child in children:
        ledger.remove(child)
    removed = {c.id for c in children}
    for tx in ledger.transactions.values():
        # partner of a deleted transfer side goes back to plain bank activity
        if tx.linked_transaction_id in removed:
            tx.linked_transaction_id = None
            tx.kind = TransactionKind.BANK
    ledger.remove(batch)
    logger.debug("Deleted batch %s with %d record(s)", batch.id, len(children))
    return account_ids
