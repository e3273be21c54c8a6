"""Shared pytest fixtures for statement importer tests.

Provides reusable fixtures for:
- ledger: An empty in-memory Ledger (saves are no-ops).
- file_ledger: An empty Ledger backed by a JSON file in a temp directory.
- tmp_project_dir: A temporary directory initialized with config.toml,
  inbox/ and ledger/, with the sample statements copied into inbox/.
- Convenience fixtures for fixture file paths and sample page text.
- ``_make_*`` builders for staged imports and ledger entities.
"""

from __future__ import annotations

import shutil
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from statement_importer.config import initialize
from statement_importer.models import (
    Account,
    AccountType,
    BalanceSnapshot,
    StagedBalance,
    StagedHolding,
    StagedImport,
    StagedTransaction,
    Transaction,
    TransactionKind,
    hash_key,
)
from statement_importer.store import Ledger

# ---------------------------------------------------------------------------
# Path constants
# ---------------------------------------------------------------------------

FIXTURES_DIR = Path(__file__).parent / "fixtures"

CHECKING_STATEMENT_PAGE = """\
ACME BANK
Statement Period 01/01/2026 through 01/31/2026
CHECKING SUMMARY
Beginning Balance $1,000.00
Ending Balance $1,450.00
DEPOSITS AND ADDITIONS
01/05 Payroll Deposit 500.00
ELECTRONIC WITHDRAWALS
01/12 Electric Company 50.00
"""

CARD_SUMMARY_PAGE = """\
New Balance $2,100.00
Minimum Payment Due: $18.00 $42.00 $300.00
Payment Due Date 02/15/2026
"""


# ---------------------------------------------------------------------------
# Fixture file path helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def fixtures_dir() -> Path:
    """Path to the tests/fixtures/ directory."""
    return FIXTURES_DIR


@pytest.fixture
def checking_csv() -> Path:
    """Path to the checking account CSV with a running balance column."""
    return FIXTURES_DIR / "chase_checking.csv"


@pytest.fixture
def brokerage_csv() -> Path:
    """Path to the brokerage activity CSV fixture."""
    return FIXTURES_DIR / "brokerage_activity.csv"


@pytest.fixture
def fidelity_csv() -> Path:
    """Path to the Fidelity statement CSV (summary block plus holdings)."""
    return FIXTURES_DIR / "fidelity_statement.csv"


@pytest.fixture
def unknown_tsv() -> Path:
    """Path to a TSV file whose headers no parser accepts."""
    return FIXTURES_DIR / "unknown_layout.tsv"


@pytest.fixture
def checking_pages() -> list[str]:
    """Page text of a one-page checking statement."""
    return [CHECKING_STATEMENT_PAGE]


@pytest.fixture
def card_pages() -> list[str]:
    """Page text of a credit card statement header."""
    return [CARD_SUMMARY_PAGE]


# ---------------------------------------------------------------------------
# Ledgers and projects
# ---------------------------------------------------------------------------


@pytest.fixture
def ledger() -> Ledger:
    """An empty in-memory ledger."""
    return Ledger()


@pytest.fixture
def file_ledger(tmp_path: Path) -> Ledger:
    """An empty ledger persisted to ``ledger.json`` under a temp directory."""
    return Ledger(tmp_path / "ledger" / "ledger.json")


@pytest.fixture
def tmp_project_dir(tmp_path: Path) -> Path:
    """Create a temporary initialized project with sample statements in inbox/.

    Returns the Path to the project root. The directory is automatically
    cleaned up after the test completes.
    """
    project = tmp_path / "statements-project"
    initialize(project)
    for name in ("chase_checking.csv", "brokerage_activity.csv", "fidelity_statement.csv"):
        shutil.copy2(FIXTURES_DIR / name, project / "inbox" / name)
    return project


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def _make_staged_txn(
    day: int,
    amount: str,
    payee: str,
    month: int = 1,
    label: str | None = None,
    kind: TransactionKind = TransactionKind.BANK,
) -> StagedTransaction:
    """Helper to build a StagedTransaction dated in 2026."""
    return StagedTransaction(
        date_posted=date(2026, month, day),
        amount=Decimal(amount),
        payee=payee,
        kind=kind,
        source_account_label=label,
    )


def _make_staged_balance(
    day: int,
    balance: str,
    label: str | None = None,
    apr: str | None = None,
    scale: int | None = None,
    month: int = 1,
) -> StagedBalance:
    """Helper to build a StagedBalance dated in 2026."""
    return StagedBalance(
        as_of_date=date(2026, month, day),
        balance=Decimal(balance),
        interest_rate_apr=Decimal(apr) if apr is not None else None,
        interest_rate_scale=scale,
        source_account_label=label,
    )


def _make_staged_holding(day: int, symbol: str, quantity: str, value: str | None = None) -> StagedHolding:
    """Helper to build a StagedHolding dated in 2026."""
    return StagedHolding(
        as_of_date=date(2026, 1, day),
        symbol=symbol,
        quantity=Decimal(quantity),
        market_value=Decimal(value) if value is not None else None,
    )


def _make_staged(
    transactions: list[StagedTransaction] | None = None,
    balances: list[StagedBalance] | None = None,
    holdings: list[StagedHolding] | None = None,
    suggested: AccountType | None = AccountType.CHECKING,
    file_name: str = "statement.csv",
    parser_id: str = "bank.csv",
) -> StagedImport:
    """Helper to build a StagedImport."""
    return StagedImport(
        parser_id=parser_id,
        source_file_name=file_name,
        suggested_account_type=suggested,
        transactions=transactions or [],
        balances=balances or [],
        holdings=holdings or [],
    )


def _make_account(
    ledger: Ledger,
    account_type: AccountType = AccountType.CHECKING,
    name: str = "Checking",
    institution: str | None = None,
) -> Account:
    """Helper to add an Account to *ledger*."""
    account = Account(name=name, type=account_type, institution_name=institution)
    ledger.add(account)
    return account


def _make_txn(
    ledger: Ledger,
    account: Account,
    day: int,
    amount: str,
    payee: str = "Manual entry",
    batch_id: str | None = None,
    user_created: bool = False,
) -> Transaction:
    """Helper to add a committed Transaction to *ledger*."""
    posted = date(2026, 1, day)
    value = Decimal(amount)
    key = hash_key(posted, value, payee)
    tx = Transaction(
        date_posted=posted,
        amount=value,
        payee=payee,
        account_id=account.id,
        hash_key=key,
        import_hash_key=None if user_created else key,
        import_batch_id=batch_id,
        is_user_created=user_created,
    )
    ledger.add(tx)
    return tx


def _make_balance(ledger: Ledger, account: Account, day: int, balance: str) -> BalanceSnapshot:
    """Helper to add a committed BalanceSnapshot to *ledger*."""
    snap = BalanceSnapshot(as_of_date=date(2026, 1, day), balance=Decimal(balance), account_id=account.id)
    ledger.add(snap)
    return snap
