"""First-time commit of a staged import into the ledger.

:func:`commit_import` resolves the target account(s), inserts the included
transactions, balances and holdings under a new import batch, links
transfers, and saves everything as one unit of work.

Dedup identity is the transaction fingerprint computed from the amount as
it will be stored, so a credit card import whose signs are flipped dedups
against earlier flipped imports of the same statement.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal

from statement_importer.errors import StatementImportError
from statement_importer.events import EventBus, notify_changed
from statement_importer.heuristics import (
    guess_institution_name,
    normalize_source_label,
    type_for_label,
)
from statement_importer.models import (
    Account,
    AccountType,
    AppConfig,
    BalanceSnapshot,
    CommitResult,
    HoldingSnapshot,
    ImportBatch,
    LoanTerms,
    StagedBalance,
    StagedImport,
    StagedTransaction,
    Transaction,
    hash_key,
)
from statement_importer.resolver import resolve_account
from statement_importer.session import ImportSession
from statement_importer.store import Ledger
from statement_importer.transfers import reconcile_transfers

logger = logging.getLogger(__name__)

NOTHING_SAVED_MESSAGE = "No new items to save (all duplicates or excluded)."

SPLIT_TYPES = (AccountType.CHECKING, AccountType.SAVINGS)

_LIABILITY_BALANCE_LABELS = frozenset({"loan", "creditCard", "default"})

_PAYMENT_KEYWORDS = (
    "payment", "auto pay", "autopay", "online payment", "thank you", "pmt",
    "cardmember serv", "card member serv", "ach credit", "ach payment",
    "directpay", "direct pay", "bill pay", "billpay",
)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def commit_import(
    ledger: Ledger,
    staged: StagedImport,
    session: ImportSession | None = None,
    config: AppConfig | None = None,
    events: EventBus | None = None,
) -> CommitResult:
    """Merge *staged* into *ledger* as a new import batch.

    Steps:

    1. Create the batch and pick the institution (the user's, else the
       file-name guess).
    2. Group included balances and transactions by normalized source
       label.  Only checking and savings imports are split across
       accounts; every other import lands in one account.
    3. Liability imports drop balances labelled with an asset type.
    4. Resolve one account per label and pre-fill liability loan terms.
    5. Insert transactions, skipping those whose fingerprint the account
       already has.  Credit card signs are flipped when the data says the
       statement uses the issuer's convention.
    6. Insert holdings and balances.  Liability balances are stored
       non-positive and promote their APR into the account's loan terms.
    7. Link transfers, save, then emit change events.

    Args:
        ledger: Target ledger.
        staged: Reviewed staged import.
        session: User choices and detected hints.  Defaults to an empty
            session.
        config: Application configuration (transfer window, currency).
        events: Optional event bus notified after the save.

    Returns:
        A :class:`CommitResult` with the batch id and insert counts.

    Raises:
        StatementImportError: If ``session.account_id`` names no account.
        StorageCommitFailed: If the ledger cannot be saved.  The ledger is
            left as it was before the call.
    """
    session = session or ImportSession()
    config = config or AppConfig()

    with ledger.unit_of_work():
        result = _apply(ledger, staged, session, config)

    if result.message:
        logger.info(result.message)
    else:
        logger.info(
            "Committed %s: %d transactions, %d balances, %d holdings, %d duplicates skipped",
            staged.source_file_name,
            result.inserted_transactions,
            result.inserted_balances,
            result.inserted_holdings,
            result.skipped_duplicates,
        )
    notify_changed(events)
    return result


def should_flip_credit_card(
    transactions: list[StagedTransaction], override: bool | None = None
) -> bool:
    """Decide whether a credit card import's signs must be inverted.

    The ledger stores purchases as negative and payments as positive.
    Decision order: an explicit *override*; the signs of payment-like rows
    (flip when most are negative); the signs of purchase rows (flip when
    most are positive); the overall sign counts; finally the sign of the
    total.
    """
    if override is not None:
        return override
    payments = [t for t in transactions if _is_payment_like(t)]
    purchases = [t for t in transactions if not _is_payment_like(t)]

    pos, neg = _sign_counts(payments)
    if pos != neg and pos + neg > 0:
        return neg > pos
    pos, neg = _sign_counts(purchases)
    if pos != neg and pos + neg > 0:
        return pos > neg
    pos, neg = _sign_counts(transactions)
    if pos == neg:
        return sum((t.amount for t in transactions), Decimal("0")) > 0
    return pos > neg


def coerce_liability_balance(value: Decimal) -> Decimal:
    """Return *value* as a non-positive amount owed."""
    return value if value <= 0 else -value


def promote_apr(
    account: Account,
    apr: Decimal | None,
    scale: int | None,
    accept_detected: bool = False,
) -> None:
    """Copy a detected APR into a liability account's loan terms.

    An APR already on the account is only replaced when *accept_detected*
    is set.
    """
    if apr is None or not account.type.is_liability:
        return
    terms = account.loan_terms or LoanTerms()
    if terms.apr is None or accept_detected:
        terms.apr = apr
        terms.apr_scale = scale
        logger.debug("Promoted APR %s to account %s", apr, account.name)
    account.loan_terms = terms


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _apply(
    ledger: Ledger, staged: StagedImport, session: ImportSession, config: AppConfig
) -> CommitResult:
    accounts_before = set(ledger.accounts)
    batch = ImportBatch(
        source_file_name=staged.source_file_name,
        label=staged.source_file_name,
        parser_id=staged.parser_id,
    )
    ledger.add(batch)
    institution = (session.institution_name or "").strip() or guess_institution_name(
        staged.source_file_name
    )

    selected = _selected_account(ledger, session, institution)
    import_type = (
        session.account_type_override
        or staged.suggested_account_type
        or (selected.type if selected is not None else None)
        or AccountType.CHECKING
    )
    split = import_type in SPLIT_TYPES
    logger.debug("Commit: import_type=%s split=%s institution=%s", import_type.value, split, institution)

    included_tx = [t for t in staged.transactions if t.include]
    included_bal = [b for b in staged.balances if b.include]
    if import_type.is_liability:
        kept = [b for b in included_bal if _label(b.source_account_label) in _LIABILITY_BALANCE_LABELS]
        if len(kept) != len(included_bal):
            logger.debug("Dropped %d non-liability balance(s)", len(included_bal) - len(kept))
        included_bal = kept
    included_holdings = [h for h in staged.holdings if h.include]

    tx_groups: dict[str, list[StagedTransaction]] = defaultdict(list)
    unlabeled: list[StagedTransaction] = []
    for t in included_tx:
        key = normalize_source_label(t.source_account_label)
        if key is None:
            unlabeled.append(t)
        else:
            tx_groups[key].append(t)
    bal_groups: dict[str, list[StagedBalance]] = defaultdict(list)
    for b in included_bal:
        bal_groups[_label(b.source_account_label)].append(b)

    labels: list[str] = []
    for key in list(tx_groups) + list(bal_groups):
        if key != "default" and key not in labels:
            labels.append(key)

    currency = config.default_currency
    accounts_by_label: dict[str, Account] = {}
    if not split or not labels:
        accounts_by_label["default"] = resolve_account(
            ledger, import_type, institution, selected, currency
        )
    else:
        for label in labels:
            label_type = type_for_label(label) or import_type
            prefer = selected if selected is not None and selected.type == label_type else None
            accounts_by_label[label] = resolve_account(ledger, label_type, institution, prefer, currency)
    first_account = next(iter(accounts_by_label.values()))

    for account in accounts_by_label.values():
        _prefill_loan_terms(account, session, included_bal)

    # Transactions
    groups: list[tuple[Account, list[StagedTransaction]]] = []
    if not split or not labels:
        groups.append((first_account, included_tx))
    else:
        for label, items in tx_groups.items():
            groups.append((accounts_by_label[label], items))
        if unlabeled:
            groups.append((selected if selected is not None else first_account, unlabeled))

    result = CommitResult(batch_id=batch.id)
    inserted: list[Transaction] = []
    for account, items in groups:
        flip = account.type == AccountType.CREDIT_CARD and should_flip_credit_card(
            items, session.flip_override
        )
        if account.type == AccountType.CREDIT_CARD:
            logger.debug("Credit card sign decision for %s: flip=%s", account.name, flip)
            batch.credit_card_signs_flipped = flip
        seen = {t.dedup_key for t in ledger.transactions_for_account(account.id)}
        for st in items:
            amount = -st.amount if flip else st.amount
            key = hash_key(st.date_posted, amount, st.payee, st.memo, st.symbol, st.quantity)
            if key in seen:
                result.skipped_duplicates += 1
                continue
            seen.add(key)
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
                import_batch_id=batch.id,
                symbol=st.symbol,
                quantity=st.quantity,
                price=st.price,
                fees=st.fees,
            )
            ledger.add(tx)
            inserted.append(tx)
    result.inserted_transactions = len(inserted)

    # Holdings
    for sh in included_holdings:
        security = ledger.fetch_or_create_security(sh.symbol)
        ledger.add(
            HoldingSnapshot(
                as_of_date=sh.as_of_date,
                quantity=sh.quantity,
                account_id=first_account.id,
                security_id=security.id,
                market_value=sh.market_value,
                import_batch_id=batch.id,
            )
        )
        result.inserted_holdings += 1

    # Balances
    placed: set[tuple[str, date]] = set()
    for label, items in bal_groups.items():
        target = accounts_by_label.get(label if split else "default", first_account)
        for sb in items:
            if (target.id, sb.as_of_date) in placed:
                logger.debug("Skipping duplicate balance for %s on %s", target.name, sb.as_of_date)
                continue
            placed.add((target.id, sb.as_of_date))
            value = coerce_liability_balance(sb.balance) if target.type.is_liability else sb.balance
            ledger.add(
                BalanceSnapshot(
                    as_of_date=sb.as_of_date,
                    balance=value,
                    account_id=target.id,
                    interest_rate_apr=sb.interest_rate_apr,
                    interest_rate_scale=sb.interest_rate_scale,
                    import_batch_id=batch.id,
                )
            )
            result.inserted_balances += 1
            if target.type.is_liability:
                promote_apr(target, sb.interest_rate_apr, sb.interest_rate_scale, session.accept_detected_apr)
                terms = target.loan_terms or LoanTerms()
                if terms.payment_day_of_month is None:
                    terms.payment_day_of_month = sb.as_of_date.day
                target.loan_terms = terms

    if first_account.type == AccountType.BROKERAGE:
        result.inserted_balances += _equity_snapshots(ledger, first_account, included_holdings, batch.id)

    result.account_ids = {label: account.id for label, account in accounts_by_label.items()}

    if not (result.inserted_transactions or result.inserted_balances or result.inserted_holdings):
        result.message = NOTHING_SAVED_MESSAGE
        ledger.remove(batch)
        for account_id in set(ledger.accounts) - accounts_before:
            if ledger.account_is_empty(account_id):
                ledger.remove(ledger.accounts[account_id])
        return result

    try:
        result.linked_transfers = reconcile_transfers(ledger, inserted, config.transfer_date_window)
    except Exception as exc:  # reconciliation never aborts a commit
        logger.warning("Transfer reconciliation skipped: %s", exc)
    return result


def _selected_account(
    ledger: Ledger, session: ImportSession, institution: str | None
) -> Account | None:
    if session.account_id is None:
        return None
    account = ledger.accounts.get(session.account_id)
    if account is None:
        raise StatementImportError(f"Unknown account id: {session.account_id}")

    override = session.account_type_override
    if override is not None and override != account.type:
        if ledger.account_is_empty(account.id):
            logger.info("Changing account %s type %s -> %s", account.name, account.type.value, override.value)
            account.type = override
        else:
            logger.warning(
                "Keeping %s type %s: the account already holds data", account.name, account.type.value
            )

    provided = (session.institution_name or "").strip()
    if provided:
        account.institution_name = provided
    elif not account.institution_name and institution:
        account.institution_name = institution
    return account


def _prefill_loan_terms(
    account: Account, session: ImportSession, balances: list[StagedBalance]
) -> None:
    if not account.type.is_liability:
        return
    terms = account.loan_terms or LoanTerms()
    typical = session.typical_payment_hint(account.type)
    if typical is not None and typical > 0 and not terms.payment_amount:
        terms.payment_amount = typical
        logger.debug("Prefilled typical payment %s for %s", typical, account.name)
    if terms.payment_day_of_month is None and balances:
        terms.payment_day_of_month = balances[0].as_of_date.day
    account.loan_terms = terms


def _equity_snapshots(ledger: Ledger, account: Account, holdings, batch_id: str) -> int:
    """Add one balance per holdings date, summing market values."""
    totals: dict[date, Decimal] = defaultdict(Decimal)
    for h in holdings:
        if h.market_value is not None:
            totals[h.as_of_date] += h.market_value
    existing = {b.as_of_date for b in ledger.balances_for_account(account.id)}
    added = 0
    for as_of, total in sorted(totals.items()):
        if total == 0 or as_of in existing:
            continue
        ledger.add(
            BalanceSnapshot(
                as_of_date=as_of, balance=total, account_id=account.id, import_batch_id=batch_id
            )
        )
        added += 1
        logger.debug("Brokerage equity snapshot %s on %s", total, as_of)
    return added


def _is_payment_like(t: StagedTransaction) -> bool:
    text = f"{t.payee} {t.memo or ''}".lower()
    return any(k in text for k in _PAYMENT_KEYWORDS)


def _sign_counts(transactions: list[StagedTransaction]) -> tuple[int, int]:
    pos = sum(1 for t in transactions if t.amount > 0)
    neg = sum(1 for t in transactions if t.amount < 0)
    return pos, neg


def _label(raw: str | None) -> str:
    return normalize_source_label(raw) or "default"
