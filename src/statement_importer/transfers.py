"""Transfer reconciliation.

After a commit, each newly inserted bank transaction is paired with an
opposite-signed transaction of the same magnitude in a different account
within a small date window.  Both sides become ``transfer`` transactions
linked to each other.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from statement_importer.models import Transaction, TransactionKind
from statement_importer.store import Ledger

logger = logging.getLogger(__name__)

TRANSFER_MEMO = "Linked transfer: {a} ⇄ {b}"


def reconcile_transfers(
    ledger: Ledger, inserted: Iterable[Transaction], window_days: int = 3
) -> int:
    """Link transfer pairs for *inserted* transactions.

    Algorithm:

    1. Skip a transaction that is already linked or is not of kind bank.
    2. Candidates are unlinked bank transactions in another account with
       the opposite sign, the same absolute amount, and a posting date at
       most *window_days* away.
    3. The closest date wins; ties go to the lowest id.
    4. Both sides become ``transfer``, reference each other, and get a
       ``Linked transfer: A ⇄ B`` memo where their memo is empty.

    Args:
        ledger: Ledger holding every transaction.
        inserted: Transactions just added by a commit.
        window_days: Maximum date distance, in days.

    Returns:
        Number of pairs linked.
    """
    linked = 0
    for tx in inserted:
        if tx.linked_transaction_id is not None or tx.kind != TransactionKind.BANK:
            continue
        match = _best_candidate(ledger, tx, window_days)
        if match is None:
            continue

        tx.kind = TransactionKind.TRANSFER
        match.kind = TransactionKind.TRANSFER
        tx.linked_transaction_id = match.id
        match.linked_transaction_id = tx.id

        a = ledger.accounts.get(tx.account_id)
        b = ledger.accounts.get(match.account_id)
        if a is not None and b is not None:
            note = TRANSFER_MEMO.format(a=a.name, b=b.name)
            if not tx.memo:
                tx.memo = note
            if not match.memo:
                match.memo = note
        linked += 1
        logger.debug(
            "Linked transfer %s (%s) <-> %s (%s) amount %s",
            tx.id, tx.date_posted, match.id, match.date_posted, tx.amount,
        )
    if linked:
        logger.info("Linked %d transfer pair(s)", linked)
    return linked


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _best_candidate(ledger: Ledger, tx: Transaction, window_days: int) -> Transaction | None:
    magnitude = abs(tx.amount)
    candidates = [
        c for c in ledger.transactions.values()
        if c.id != tx.id
        and c.account_id != tx.account_id
        and c.linked_transaction_id is None
        and c.kind == TransactionKind.BANK
        and (c.amount < 0) != (tx.amount < 0)
        and abs(c.amount) == magnitude
        and abs((c.date_posted - tx.date_posted).days) <= window_days
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda c: (abs((c.date_posted - tx.date_posted).days), c.id))
