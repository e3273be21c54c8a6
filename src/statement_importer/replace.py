"""Re-import of a statement into an existing batch.

:func:`replace_batch` reconciles a freshly staged import against what an
earlier import of the same document left in the ledger:

* transactions are matched by their immutable ``import_hash_key``;
* balances by ``as_of_date``;
* holdings by ``(symbol, as_of_date)``.

Matching records are updated, new ones inserted and vanished ones deleted.
Records the user modified are never touched unless their key is forced,
and an update only counts when a value actually changes, so replaying the
same file twice reports zero changes.  A transaction the transfer
reconciler linked keeps its ``transfer`` kind and linkage memo.  Credit
card signs follow the decision recorded on the batch when it was first
committed.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date

from statement_importer.commit import coerce_liability_balance, promote_apr, should_flip_credit_card
from statement_importer.errors import StatementImportError
from statement_importer.events import EventBus, notify_changed
from statement_importer.models import (
    Account,
    AccountType,
    BalanceSnapshot,
    HoldingSnapshot,
    ReplaceCounts,
    StagedImport,
    Transaction,
    TransactionKind,
    hash_key,
)
from statement_importer.store import Ledger
from statement_importer.transfers import reconcile_transfers

logger = logging.getLogger(__name__)

_TX_FIELDS = (
    "date_posted", "amount", "payee", "memo", "kind", "external_id",
    "symbol", "quantity", "price", "fees",
)
_LINKED_TX_FIELDS = tuple(f for f in _TX_FIELDS if f not in ("memo", "kind"))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def replace_batch(
    ledger: Ledger,
    batch_id: str,
    staged: StagedImport,
    force_tx_keys: Iterable[str] = (),
    force_balance_dates: Iterable[date] = (),
    force_holding_keys: Iterable[str] = (),
    events: EventBus | None = None,
    accept_detected_apr: bool = False,
    flip_override: bool | None = None,
    transfer_date_window: int = 3,
) -> ReplaceCounts:
    """Replace the contents of batch *batch_id* with *staged*.

    Args:
        ledger: Ledger holding the batch.
        batch_id: Id of the batch to replace.
        staged: Newly parsed import of the same document.
        force_tx_keys: Transaction import keys whose user edits should be
            overwritten.  Forced records lose their user flags.
        force_balance_dates: Balance dates to overwrite despite user edits.
        force_holding_keys: Holding keys (``SYMBOL@YYYY-MM-DD``) to
            overwrite despite user edits.
        events: Optional event bus notified after the save.
        accept_detected_apr: Let a detected APR replace one already on a
            liability account.
        flip_override: Force (True) or forbid (False) credit card sign
            inversion.  When omitted the decision recorded on the batch is
            reused, falling back to the sign heuristic for older batches.
        transfer_date_window: Date window, in days, for linking newly
            inserted transactions as transfers.

    Returns:
        Update, insert and delete counts per record kind.

    Raises:
        StatementImportError: If *batch_id* is unknown.
        StorageCommitFailed: If the save fails.  Nothing is applied.
    """
    force_tx = set(force_tx_keys)
    force_bal = set(force_balance_dates)
    force_hold = set(force_holding_keys)
    counts = ReplaceCounts()

    with ledger.unit_of_work():
        if batch_id not in ledger.batches:
            raise StatementImportError(f"Unknown batch id: {batch_id}")
        inserted = _replace_transactions(ledger, batch_id, staged, force_tx, counts, flip_override)
        _replace_balances(ledger, batch_id, staged, force_bal, counts, accept_detected_apr)
        _replace_holdings(ledger, batch_id, staged, force_hold, counts)
        if inserted:
            try:
                counts.linked_transfers = reconcile_transfers(ledger, inserted, transfer_date_window)
            except Exception as exc:  # reconciliation never aborts a replace
                logger.warning("Transfer reconciliation skipped: %s", exc)

    logger.info(
        "Replaced batch %s: transactions +%d ~%d -%d, balances +%d ~%d -%d, holdings +%d ~%d -%d",
        batch_id,
        counts.inserted_transactions, counts.updated_transactions, counts.deleted_transactions,
        counts.inserted_balances, counts.updated_balances, counts.deleted_balances,
        counts.inserted_holdings, counts.updated_holdings, counts.deleted_holdings,
    )
    notify_changed(events)
    return counts


def holding_key(symbol: str, as_of_date: date) -> str:
    """Return the replace key of a holding: ``SYMBOL@YYYY-MM-DD``."""
    return f"{symbol}@{as_of_date.isoformat()}"


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _target_account(ledger: Ledger, batch_id: str, order: tuple[str, ...]) -> Account | None:
    """Account of the first existing sibling, searched in *order*."""
    lookups = {
        "transactions": ledger.batch_transactions,
        "balances": ledger.batch_balances,
        "holdings": ledger.batch_holdings,
    }
    for kind in order:
        siblings = lookups[kind](batch_id)
        if siblings:
            return ledger.accounts.get(siblings[0].account_id)
    return None


def _replace_transactions(
    ledger: Ledger,
    batch_id: str,
    staged: StagedImport,
    force: set[str],
    counts: ReplaceCounts,
    flip_override: bool | None,
) -> list[Transaction]:
    existing = {t.dedup_key: t for t in ledger.batch_transactions(batch_id)}
    account = _target_account(ledger, batch_id, ("transactions", "balances", "holdings"))

    included = [t for t in staged.transactions if t.include]
    flip = False
    if account is not None and account.type == AccountType.CREDIT_CARD:
        if flip_override is None:
            flip_override = ledger.batches[batch_id].credit_card_signs_flipped
        flip = should_flip_credit_card(included, flip_override)
        logger.debug("Credit card sign decision for batch %s: flip=%s", batch_id, flip)

    incoming: dict[str, tuple] = {}
    for st in included:
        amount = -st.amount if flip else st.amount
        key = hash_key(st.date_posted, amount, st.payee, st.memo, st.symbol, st.quantity)
        incoming[key] = (st, amount)

    inserted: list[Transaction] = []
    for key, (st, amount) in incoming.items():
        ex = existing.get(key)
        if ex is not None:
            forced = key in force
            if ex.is_user_modified and not forced:
                continue
            linked = ex.linked_transaction_id is not None
            compared = _LINKED_TX_FIELDS if linked else _TX_FIELDS
            before = tuple(getattr(ex, f) for f in compared)
            ex.date_posted = st.date_posted
            ex.amount = amount
            ex.payee = st.payee
            if not linked:
                ex.memo = st.memo
                ex.kind = st.kind
            elif st.memo:
                ex.memo = st.memo
            ex.external_id = st.external_id
            ex.symbol = st.symbol
            ex.quantity = st.quantity
            ex.price = st.price
            ex.fees = st.fees
            changed = before != tuple(getattr(ex, f) for f in compared)
            if changed:
                ex.recompute_hash()
            if forced and (ex.is_user_modified or ex.is_user_edited):
                ex.is_user_modified = False
                ex.is_user_edited = False
                changed = True
            if changed:
                counts.updated_transactions += 1
            continue

        if account is None:
            logger.debug("No target account for new transaction %s", st.payee)
            continue
        tx = Transaction(
            date_posted=st.date_posted,
            amount=amount,
            payee=st.payee,
            account_id=account.id,
            hash_key=key,
            memo=st.memo,
            kind=st.kind,
            external_id=st.external_id,
            import_hash_key=key,
            import_batch_id=batch_id,
            symbol=st.symbol,
            quantity=st.quantity,
            price=st.price,
            fees=st.fees,
        )
        ledger.add(tx)
        inserted.append(tx)
        counts.inserted_transactions += 1

    for key, ex in existing.items():
        if key not in incoming and not ex.is_user_modified:
            _unlink_partner(ledger, ex)
            ledger.remove(ex)
            counts.deleted_transactions += 1
    return inserted


def _unlink_partner(ledger: Ledger, tx: Transaction) -> None:
    partner = ledger.transactions.get(tx.linked_transaction_id) if tx.linked_transaction_id else None
    if partner is not None and partner.linked_transaction_id == tx.id:
        partner.linked_transaction_id = None
        partner.kind = TransactionKind.BANK


def _replace_balances(
    ledger: Ledger,
    batch_id: str,
    staged: StagedImport,
    force: set[date],
    counts: ReplaceCounts,
    accept_detected_apr: bool,
) -> None:
    existing = {b.as_of_date: b for b in ledger.batch_balances(batch_id)}
    incoming = {b.as_of_date: b for b in staged.balances if b.include}
    fallback = _target_account(ledger, batch_id, ("balances", "transactions", "holdings"))

    for as_of, sb in incoming.items():
        ex = existing.get(as_of)
        if ex is not None:
            forced = as_of in force
            if ex.is_user_modified and not forced:
                continue
            account = ledger.accounts.get(ex.account_id)
            value = sb.balance
            if account is not None and account.type.is_liability:
                value = coerce_liability_balance(value)
            before = (ex.balance, ex.interest_rate_apr, ex.interest_rate_scale)
            ex.balance = value
            ex.interest_rate_apr = sb.interest_rate_apr
            ex.interest_rate_scale = sb.interest_rate_scale
            if account is not None:
                promote_apr(account, sb.interest_rate_apr, sb.interest_rate_scale, accept_detected_apr)
            changed = before != (ex.balance, ex.interest_rate_apr, ex.interest_rate_scale)
            if forced and ex.is_user_modified:
                ex.is_user_modified = False
                changed = True
            if changed:
                counts.updated_balances += 1
            continue

        if fallback is None:
            continue
        value = coerce_liability_balance(sb.balance) if fallback.type.is_liability else sb.balance
        ledger.add(
            BalanceSnapshot(
                as_of_date=as_of,
                balance=value,
                account_id=fallback.id,
                interest_rate_apr=sb.interest_rate_apr,
                interest_rate_scale=sb.interest_rate_scale,
                import_batch_id=batch_id,
            )
        )
        promote_apr(fallback, sb.interest_rate_apr, sb.interest_rate_scale, accept_detected_apr)
        counts.inserted_balances += 1

    for as_of, ex in existing.items():
        if as_of not in incoming and not ex.is_user_modified:
            ledger.remove(ex)
            counts.deleted_balances += 1


def _replace_holdings(
    ledger: Ledger, batch_id: str, staged: StagedImport, force: set[str], counts: ReplaceCounts
) -> None:
    existing: dict[str, HoldingSnapshot] = {}
    for h in ledger.batch_holdings(batch_id):
        existing[holding_key(ledger.security_symbol(h.security_id) or "", h.as_of_date)] = h
    incoming = {holding_key(h.symbol, h.as_of_date): h for h in staged.holdings if h.include}
    fallback = _target_account(ledger, batch_id, ("holdings", "transactions", "balances"))

    for key, sh in incoming.items():
        ex = existing.get(key)
        if ex is not None:
            forced = key in force
            if ex.is_user_modified and not forced:
                continue
            before = (ex.quantity, ex.market_value)
            ex.quantity = sh.quantity
            ex.market_value = sh.market_value
            changed = before != (ex.quantity, ex.market_value)
            if forced and ex.is_user_modified:
                ex.is_user_modified = False
                changed = True
            if changed:
                counts.updated_holdings += 1
            continue

        if fallback is None:
            continue
        security = ledger.fetch_or_create_security(sh.symbol)
        ledger.add(
            HoldingSnapshot(
                as_of_date=sh.as_of_date,
                quantity=sh.quantity,
                account_id=fallback.id,
                security_id=security.id,
                market_value=sh.market_value,
                import_batch_id=batch_id,
            )
        )
        counts.inserted_holdings += 1

    for key, ex in existing.items():
        if key not in incoming and not ex.is_user_modified:
            ledger.remove(ex)
            counts.deleted_holdings += 1
