"""Core data models for the statement importer.

This module defines the staged (pre-commit) representation produced by the
parsers, the persistent ledger entities the merge engine writes, the
application configuration, and the dedup fingerprint.  It has zero internal
imports -- everything depends on it, but it depends on nothing within the
package.
"""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum


class AccountType(str, Enum):
    """Kinds of ledger accounts."""

    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT_CARD = "creditCard"
    LOAN = "loan"
    CASH = "cash"
    BROKERAGE = "brokerage"
    OTHER = "other"

    @property
    def is_liability(self) -> bool:
        return self in (AccountType.LOAN, AccountType.CREDIT_CARD)


class TransactionKind(str, Enum):
    """Economic kind of a transaction."""

    BANK = "bank"
    FEE = "fee"
    INTEREST = "interest"
    TRANSFER = "transfer"
    BUY = "buy"
    SELL = "sell"
    DIVIDEND = "dividend"
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    ADJUSTMENT = "adjustment"


def new_id() -> str:
    """Return a fresh opaque identifier for a ledger entity."""
    return uuid.uuid4().hex


def decimal_text(value: Decimal) -> str:
    """Render *value* without exponent or trailing zeros (``-4.50`` -> ``-4.5``)."""
    if value == 0:
        return "0"
    return format(value.normalize(), "f")


def hash_key(
    date_posted: date,
    amount: Decimal,
    payee: str,
    memo: str | None = None,
    symbol: str | None = None,
    quantity: Decimal | None = None,
) -> str:
    """Compute the dedup fingerprint of a transaction.

    The fingerprint is the SHA-256 hex digest of the pipe-delimited
    concatenation of: ISO date, signed amount, payee (as-is), memo, symbol,
    and quantity.  Missing optional parts contribute an empty string.
    Amounts and quantities are rendered normalized, so ``Decimal("-4.50")``
    and ``Decimal("-4.5")`` produce the same key.

    Args:
        date_posted: Posting date.
        amount: Signed amount.
        payee: Payee or description text.
        memo: Optional memo.
        symbol: Optional security symbol (brokerage rows).
        quantity: Optional share quantity (brokerage rows).

    Returns:
        A 64-character lowercase hex string.
    """
    parts = [
        date_posted.isoformat(),
        decimal_text(amount),
        payee,
        memo or "",
        symbol or "",
        decimal_text(quantity) if quantity is not None else "",
    ]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Staged (ephemeral) entities
# ---------------------------------------------------------------------------


@dataclass
class StagedTransaction:
    """A parsed transaction awaiting review and commit.

    Attributes:
        date_posted: Posting date.
        amount: Signed amount as found in (or inferred from) the source.
        payee: Description/payee text.
        memo: Optional memo text.
        kind: Transaction kind.
        external_id: Institution-provided identifier, if any.
        symbol: Security symbol for brokerage activity.
        quantity: Share quantity for brokerage activity.
        price: Per-share price for brokerage activity.
        fees: Fees for brokerage activity.
        hash_key: Dedup fingerprint computed by the parser.
        source_account_label: Raw account label seen in the document.
        include: False when the user excluded the row during review.
    """

    date_posted: date
    amount: Decimal
    payee: str
    memo: str | None = None
    kind: TransactionKind = TransactionKind.BANK
    external_id: str | None = None
    symbol: str | None = None
    quantity: Decimal | None = None
    price: Decimal | None = None
    fees: Decimal | None = None
    hash_key: str = ""
    source_account_label: str | None = None
    include: bool = True

    def __post_init__(self) -> None:
        if not self.hash_key:
            self.hash_key = hash_key(
                self.date_posted, self.amount, self.payee, self.memo, self.symbol, self.quantity
            )


@dataclass
class StagedBalance:
    """A statement balance awaiting commit.

    ``interest_rate_apr`` is a fraction (``0.2499`` for 24.99%) and
    ``interest_rate_scale`` the number of decimal digits seen in the source
    percentage token.
    """

    as_of_date: date
    balance: Decimal
    interest_rate_apr: Decimal | None = None
    interest_rate_scale: int | None = None
    source_account_label: str | None = None
    include: bool = True


@dataclass
class StagedHolding:
    """A security position awaiting commit."""

    as_of_date: date
    symbol: str
    quantity: Decimal
    market_value: Decimal | None = None
    include: bool = True


@dataclass
class StagedImport:
    """The canonical intermediate produced by one parse.

    Attributes:
        parser_id: Identifier of the parser that produced this import.
        source_file_name: Base name of the imported file.
        suggested_account_type: The parser's or classifier's guess, or
            ``None`` to defer to the user.
        transactions: Staged transactions.
        holdings: Staged holdings.
        balances: Staged balances.
    """

    parser_id: str
    source_file_name: str = "Unknown"
    suggested_account_type: AccountType | None = None
    transactions: list[StagedTransaction] = field(default_factory=list)
    holdings: list[StagedHolding] = field(default_factory=list)
    balances: list[StagedBalance] = field(default_factory=list)


@dataclass
class StagingResult:
    """Return type of :func:`statement_importer.importer.stage_file`.

    Attributes:
        staged: The staged import, ready for review.
        messages: Advisory messages for display.  These are data, not
            errors.
        confidence: ``"none"``, ``"low"``, ``"medium"`` or ``"high"``.
        headers: Raw headers the parser saw (for mapping fallbacks).
    """

    staged: StagedImport
    messages: list[str] = field(default_factory=list)
    confidence: str = "high"
    headers: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Persistent entities
# ---------------------------------------------------------------------------


@dataclass
class LoanTerms:
    """Liability terms attached to a loan or credit card account."""

    apr: Decimal | None = None
    apr_scale: int | None = None
    payment_amount: Decimal | None = None
    payment_day_of_month: int | None = None
    payment_frequency: str = "monthly"


@dataclass
class Account:
    """A ledger account.

    Attributes:
        id: Opaque unique identifier.
        name: Display name.
        type: Account type.  Balance sign semantics depend on it.
        institution_name: Institution display name, if known.
        currency_code: ISO currency code.  Default: "USD".
        loan_terms: Liability terms, or ``None``.
        credit_card_payment_mode: Optional user preference for card
            payments, stored verbatim.
        created_at: Creation timestamp.
    """

    name: str
    type: AccountType
    institution_name: str | None = None
    currency_code: str = "USD"
    loan_terms: LoanTerms | None = None
    credit_card_payment_mode: str | None = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class Transaction:
    """A committed transaction.

    ``hash_key`` tracks the current visible fields and is recomputed on
    every edit.  ``import_hash_key`` is assigned once at insert and is the
    identity used when a batch is re-imported.
    """

    date_posted: date
    amount: Decimal
    payee: str
    account_id: str
    hash_key: str
    memo: str | None = None
    kind: TransactionKind = TransactionKind.BANK
    external_id: str | None = None
    import_hash_key: str | None = None
    import_batch_id: str | None = None
    linked_transaction_id: str | None = None
    symbol: str | None = None
    quantity: Decimal | None = None
    price: Decimal | None = None
    fees: Decimal | None = None
    is_user_created: bool = False
    is_user_edited: bool = False
    is_excluded: bool = False
    is_user_modified: bool = False
    original_amount: Decimal | None = None
    original_date: date | None = None
    id: str = field(default_factory=new_id)

    @property
    def dedup_key(self) -> str:
        """Identity used for dedup: ``import_hash_key`` or, for legacy rows, ``hash_key``."""
        return self.import_hash_key or self.hash_key

    def recompute_hash(self) -> None:
        self.hash_key = hash_key(
            self.date_posted, self.amount, self.payee, self.memo, self.symbol, self.quantity
        )

    def apply_user_edit(
        self,
        *,
        amount: Decimal | None = None,
        date_posted: date | None = None,
        payee: str | None = None,
        memo: str | None = None,
        kind: TransactionKind | None = None,
    ) -> None:
        """Record a manual correction.

        The first edit captures ``original_amount`` and ``original_date``.
        Every edit marks the row user-modified (which locks it against
        re-import overwrites) and recomputes ``hash_key``.
        ``import_hash_key`` is never touched.
        """
        if self.original_amount is None and self.original_date is None:
            self.original_amount = self.amount
            self.original_date = self.date_posted
        if amount is not None:
            self.amount = amount
        if date_posted is not None:
            self.date_posted = date_posted
        if payee is not None:
            self.payee = payee
        if memo is not None:
            self.memo = memo
        if kind is not None:
            self.kind = kind
        self.is_user_edited = True
        self.is_user_modified = True
        self.recompute_hash()


@dataclass
class BalanceSnapshot:
    """A committed statement balance."""

    as_of_date: date
    balance: Decimal
    account_id: str
    interest_rate_apr: Decimal | None = None
    interest_rate_scale: int | None = None
    import_batch_id: str | None = None
    is_user_created: bool = False
    is_excluded: bool = False
    is_user_modified: bool = False
    id: str = field(default_factory=new_id)


@dataclass
class Security:
    """A tradable security referenced by holdings."""

    symbol: str
    name: str | None = None
    id: str = field(default_factory=new_id)


@dataclass
class HoldingSnapshot:
    """A committed security position."""

    as_of_date: date
    quantity: Decimal
    account_id: str
    security_id: str
    market_value: Decimal | None = None
    import_batch_id: str | None = None
    is_excluded: bool = False
    is_user_modified: bool = False
    id: str = field(default_factory=new_id)


@dataclass
class ImportBatch:
    """The unit of work produced by one import action.

    Deleting a batch cascades to every transaction, balance and holding
    whose ``import_batch_id`` points at it.

    ``credit_card_signs_flipped`` records the sign decision taken for a
    credit card import so a replace of the same document reuses it; it is
    ``None`` for other imports.
    """

    source_file_name: str
    label: str = ""
    parser_id: str | None = None
    credit_card_signs_flipped: bool | None = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=datetime.now)


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------


@dataclass
class CommitResult:
    """Outcome of :func:`statement_importer.commit.commit_import`.

    Attributes:
        batch_id: Identifier of the created batch.
        account_ids: Accounts that received data, keyed by source label.
        inserted_transactions: Number of new transactions.
        inserted_balances: Number of new balance snapshots (including
            derived brokerage equity snapshots).
        inserted_holdings: Number of new holding snapshots.
        skipped_duplicates: Transactions skipped by dedup.
        linked_transfers: Transfer pairs linked after commit.
        message: User-facing note, e.g. when nothing new was saved.
    """

    batch_id: str
    account_ids: dict[str, str] = field(default_factory=dict)
    inserted_transactions: int = 0
    inserted_balances: int = 0
    inserted_holdings: int = 0
    skipped_duplicates: int = 0
    linked_transfers: int = 0
    message: str = ""


@dataclass
class ReplaceCounts:
    """Per-kind update/insert/delete counts from a batch replace."""

    updated_transactions: int = 0
    inserted_transactions: int = 0
    deleted_transactions: int = 0
    updated_balances: int = 0
    inserted_balances: int = 0
    deleted_balances: int = 0
    updated_holdings: int = 0
    inserted_holdings: int = 0
    deleted_holdings: int = 0
    linked_transfers: int = 0

    @property
    def total(self) -> int:
        return (
            self.updated_transactions
            + self.inserted_transactions
            + self.deleted_transactions
            + self.updated_balances
            + self.inserted_balances
            + self.deleted_balances
            + self.updated_holdings
            + self.inserted_holdings
            + self.deleted_holdings
        )


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class MinimumPaymentRules:
    """Plausibility filter for a detected credit card minimum payment.

    Attributes:
        min_amount: Smallest acceptable payment.  Default: 25.
        min_ratio: Lowest acceptable payment/new-balance ratio.
        max_ratio: Highest acceptable payment/new-balance ratio.
        target_ratio: When several candidates pass, the one whose ratio is
            closest to this wins.
        whole_dollar: Require a whole-dollar amount.
    """

    min_amount: Decimal = Decimal("25")
    min_ratio: Decimal = Decimal("0.01")
    max_ratio: Decimal = Decimal("0.10")
    target_ratio: Decimal = Decimal("0.02")
    whole_dollar: bool = True


@dataclass
class ScanLimits:
    """Finite caps for every scan-forward heuristic."""

    apr_table_lines: int = 120
    apr_lookahead_lines: int = 8
    payment_window_lines: int = 40
    payment_lookahead_lines: int = 2
    card_summary_pages: int = 3
    interest_section_chars: int = 2500
    balance_summary_lines: int = 120
    sample_rows: int = 50


@dataclass
class AppConfig:
    """Top-level application configuration loaded from config.toml.

    Attributes:
        ledger_path: Ledger JSON file, relative to the project root.
            Default: "ledger/ledger.json".
        inbox_dir: Directory where statements are dropped.  Default:
            "inbox".
        default_currency: Currency code for new accounts.
        transfer_date_window: Maximum days between the two sides of a
            transfer.  Default: 3.
        minimum_payment: Minimum-payment plausibility rules.
        scan_limits: Heuristic scan caps.
    """

    ledger_path: str = "ledger/ledger.json"
    inbox_dir: str = "inbox"
    default_currency: str = "USD"
    transfer_date_window: int = 3
    minimum_payment: MinimumPaymentRules = field(default_factory=MinimumPaymentRules)
    scan_limits: ScanLimits = field(default_factory=ScanLimits)
