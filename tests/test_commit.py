"""Tests for statement_importer.commit: first-time merge of a staged import."""

from __future__ import annotations

from decimal import Decimal

import pytest

from conftest import (
    _make_account,
    _make_staged,
    _make_staged_balance,
    _make_staged_holding,
    _make_staged_txn,
    _make_txn,
)
from statement_importer.commit import (
    NOTHING_SAVED_MESSAGE,
    coerce_liability_balance,
    commit_import,
    promote_apr,
    should_flip_credit_card,
)
from statement_importer.errors import StatementImportError
from statement_importer.events import ACCOUNTS_CHANGED, TRANSACTIONS_CHANGED, EventBus
from statement_importer.models import AccountType, LoanTerms, TransactionKind
from statement_importer.session import ImportSession


def _checking_staged():
    return _make_staged(
        transactions=[
            _make_staged_txn(3, "2500.00", "PAYROLL ACME CORP"),
            _make_staged_txn(5, "-4.50", "COFFEE SHOP"),
        ],
        balances=[_make_staged_balance(2, "1000.00"), _make_staged_balance(5, "3495.50")],
    )


# ---------------------------------------------------------------------------
# Basic commit
# ---------------------------------------------------------------------------


class TestCommitImport:
    """Tests for commit_import on asset accounts."""

    def test_inserts_under_new_batch(self, ledger):
        """Transactions and balances land in one new account under one batch."""
        result = commit_import(ledger, _checking_staged())

        assert result.inserted_transactions == 2
        assert result.inserted_balances == 2
        assert result.message == ""
        batch = ledger.batches[result.batch_id]
        assert batch.source_file_name == "statement.csv"
        assert batch.parser_id == "bank.csv"
        [account] = ledger.accounts.values()
        assert account.name == "Checking"
        assert account.type == AccountType.CHECKING
        assert all(t.import_batch_id == batch.id for t in ledger.transactions.values())
        assert all(t.import_hash_key == t.hash_key for t in ledger.transactions.values())

    def test_institution_from_session(self, ledger):
        """The user's institution names the new account."""
        result = commit_import(ledger, _checking_staged(), ImportSession(institution_name="Chase"))
        account = ledger.accounts[result.account_ids["default"]]
        assert account.name == "Chase Checking"
        assert account.institution_name == "Chase"

    def test_institution_from_file_name(self, ledger):
        """Without a user institution the file name is consulted."""
        staged = _checking_staged()
        staged.source_file_name = "Chase_statement.csv"
        result = commit_import(ledger, staged)
        assert ledger.accounts[result.account_ids["default"]].institution_name == "Chase"

    def test_excluded_rows_are_skipped(self, ledger):
        """Rows the user excluded are not inserted."""
        staged = _checking_staged()
        staged.transactions[1].include = False
        staged.balances[0].include = False
        result = commit_import(ledger, staged)
        assert result.inserted_transactions == 1
        assert result.inserted_balances == 1

    def test_second_commit_dedups(self, ledger):
        """Re-committing the same activity into the same account inserts nothing."""
        session = ImportSession(institution_name="Chase")
        staged = _make_staged(transactions=[_make_staged_txn(5, "-4.50", "COFFEE SHOP")])
        commit_import(ledger, staged, session)

        again = commit_import(ledger, _make_staged(transactions=[_make_staged_txn(5, "-4.50", "COFFEE SHOP")]), session)
        assert again.inserted_transactions == 0
        assert again.skipped_duplicates == 1
        assert again.message == NOTHING_SAVED_MESSAGE
        assert again.batch_id not in ledger.batches
        assert len(ledger.transactions) == 1
        assert len(ledger.batches) == 1

    def test_nothing_saved_removes_new_empty_account(self, ledger):
        """When every row is excluded neither the batch nor a new account survives."""
        staged = _checking_staged()
        for row in staged.transactions + staged.balances:
            row.include = False
        result = commit_import(ledger, staged)
        assert result.message == NOTHING_SAVED_MESSAGE
        assert ledger.batches == {}
        assert ledger.accounts == {}

    def test_nothing_saved_keeps_selected_account(self, ledger):
        """An existing selected account is never removed."""
        account = _make_account(ledger)
        staged = _make_staged()
        result = commit_import(ledger, staged, ImportSession(account_id=account.id))
        assert result.message == NOTHING_SAVED_MESSAGE
        assert account.id in ledger.accounts

    def test_unknown_account_id(self, ledger):
        """A missing selected account aborts without side effects."""
        with pytest.raises(StatementImportError):
            commit_import(ledger, _checking_staged(), ImportSession(account_id="missing"))
        assert ledger.batches == {}
        assert ledger.transactions == {}

    def test_events_after_commit(self, ledger):
        """Both change events are emitted, transactions first."""
        seen: list[str] = []
        bus = EventBus()
        bus.subscribe(TRANSACTIONS_CHANGED, seen.append)
        bus.subscribe(ACCOUNTS_CHANGED, seen.append)
        commit_import(ledger, _checking_staged(), events=bus)
        assert seen == [TRANSACTIONS_CHANGED, ACCOUNTS_CHANGED]


# ---------------------------------------------------------------------------
# Import type and account selection
# ---------------------------------------------------------------------------


class TestImportType:
    """Tests for how the target account type is decided."""

    def test_override_beats_suggestion(self, ledger):
        """The user's type override wins over the parser's suggestion."""
        result = commit_import(ledger, _checking_staged(), ImportSession(account_type_override=AccountType.SAVINGS))
        assert ledger.accounts[result.account_ids["default"]].type == AccountType.SAVINGS

    def test_selected_account_type_when_no_suggestion(self, ledger):
        """Without a suggestion the selected account's type is used."""
        account = _make_account(ledger, AccountType.SAVINGS, "Savings")
        staged = _make_staged(transactions=[_make_staged_txn(5, "10.00", "Interest")], suggested=None)
        result = commit_import(ledger, staged, ImportSession(account_id=account.id))
        assert result.account_ids == {"default": account.id}

    def test_override_retypes_empty_selected_account(self, ledger):
        """An empty selected account takes the override type."""
        account = _make_account(ledger, AccountType.CHECKING)
        commit_import(
            ledger,
            _checking_staged(),
            ImportSession(account_id=account.id, account_type_override=AccountType.SAVINGS),
        )
        assert account.type == AccountType.SAVINGS

    def test_override_keeps_type_of_account_with_data(self, ledger):
        """A selected account that already holds data keeps its type."""
        account = _make_account(ledger, AccountType.CHECKING)
        _make_txn(ledger, account, 1, "1.00")
        commit_import(
            ledger,
            _checking_staged(),
            ImportSession(account_id=account.id, account_type_override=AccountType.SAVINGS),
        )
        assert account.type == AccountType.CHECKING

    def test_labels_split_checking_and_savings(self, ledger):
        """Labelled bank rows are split across one account per label."""
        staged = _make_staged(
            transactions=[
                _make_staged_txn(5, "-4.50", "COFFEE SHOP", label="checking"),
                _make_staged_txn(6, "0.42", "INTEREST PAID", label="Savings"),
            ],
            balances=[
                _make_staged_balance(31, "995.50", label="checking"),
                _make_staged_balance(31, "5000.42", label="savings"),
            ],
        )
        result = commit_import(ledger, staged)
        assert set(result.account_ids) == {"checking", "savings"}
        savings = ledger.accounts[result.account_ids["savings"]]
        assert savings.type == AccountType.SAVINGS
        assert [b.balance for b in ledger.balances_for_account(savings.id)] == [Decimal("5000.42")]

    def test_no_split_for_brokerage(self, ledger):
        """Non-bank imports land in a single account whatever the labels."""
        staged = _make_staged(
            transactions=[_make_staged_txn(5, "12.34", "Dividend VTI", label="checking")],
            suggested=AccountType.BROKERAGE,
        )
        result = commit_import(ledger, staged)
        assert list(result.account_ids) == ["default"]


# ---------------------------------------------------------------------------
# Liabilities
# ---------------------------------------------------------------------------


class TestLiabilityCommit:
    """Tests for credit card and loan specific behavior."""

    def test_balance_stored_negative_with_apr(self, ledger):
        """Liability balances are stored as amounts owed and their APR is promoted."""
        staged = _make_staged(
            balances=[_make_staged_balance(31, "2100.00", label="creditCard", apr="0.2499", scale=2)],
            suggested=AccountType.CREDIT_CARD,
            parser_id="pdf.summary",
        )
        result = commit_import(ledger, staged, ImportSession(typical_payments={"creditCard": Decimal("42")}))

        account = ledger.accounts[result.account_ids["default"]]
        [snap] = ledger.balances_for_account(account.id)
        assert snap.balance == Decimal("-2100.00")
        assert account.loan_terms.apr == Decimal("0.2499")
        assert account.loan_terms.apr_scale == 2
        assert account.loan_terms.payment_amount == Decimal("42")
        assert account.loan_terms.payment_day_of_month == 31

    def test_asset_labelled_balances_dropped(self, ledger):
        """A card import ignores balances labelled as a bank account."""
        staged = _make_staged(
            balances=[
                _make_staged_balance(31, "2100.00", label="creditcard"),
                _make_staged_balance(31, "950.00", label="checking"),
            ],
            suggested=AccountType.CREDIT_CARD,
        )
        result = commit_import(ledger, staged)
        assert result.inserted_balances == 1

    def test_card_signs_flipped(self, ledger):
        """Issuer-style positive purchases are stored negative."""
        staged = _make_staged(
            transactions=[
                _make_staged_txn(5, "4.50", "COFFEE SHOP"),
                _make_staged_txn(9, "-100.00", "PAYMENT THANK YOU"),
            ],
            suggested=AccountType.CREDIT_CARD,
        )
        commit_import(ledger, staged)
        amounts = sorted(t.amount for t in ledger.transactions.values())
        assert amounts == [Decimal("-4.50"), Decimal("100.00")]

    def test_flipped_import_dedups_on_stored_amount(self, ledger):
        """A second flipped import of the same rows inserts nothing."""
        def staged():
            return _make_staged(
                transactions=[_make_staged_txn(5, "4.50", "COFFEE SHOP"), _make_staged_txn(6, "20.00", "GROCER")],
                suggested=AccountType.CREDIT_CARD,
            )

        first = commit_import(ledger, staged())
        session = ImportSession(account_id=first.account_ids["default"])
        second = commit_import(ledger, staged(), session)
        assert second.skipped_duplicates == 2
        assert second.inserted_transactions == 0

    def test_flip_override(self, ledger):
        """An explicit no-flip decision keeps the source signs."""
        staged = _make_staged(
            transactions=[_make_staged_txn(5, "4.50", "COFFEE SHOP")],
            suggested=AccountType.CREDIT_CARD,
        )
        commit_import(ledger, staged, ImportSession(flip_override=False))
        [tx] = ledger.transactions.values()
        assert tx.amount == Decimal("4.50")

    def test_sign_decision_recorded_on_batch(self, ledger):
        """The batch remembers the card sign decision; bank batches record none."""
        card = _make_staged(
            transactions=[_make_staged_txn(5, "4.50", "COFFEE SHOP")],
            suggested=AccountType.CREDIT_CARD,
        )
        flipped = commit_import(ledger, card)
        kept = commit_import(
            ledger,
            _make_staged(transactions=[_make_staged_txn(6, "9.00", "BAKERY")], suggested=AccountType.CREDIT_CARD),
            ImportSession(flip_override=False),
        )
        bank = commit_import(ledger, _checking_staged())

        assert ledger.batches[flipped.batch_id].credit_card_signs_flipped is True
        assert ledger.batches[kept.batch_id].credit_card_signs_flipped is False
        assert ledger.batches[bank.batch_id].credit_card_signs_flipped is None


class TestShouldFlipCreditCard:
    """Tests for the credit card sign decision."""

    def test_negative_payments_flip(self):
        """Payments shown negative mean the issuer's convention."""
        rows = [_make_staged_txn(5, "4.50", "COFFEE"), _make_staged_txn(9, "-100.00", "AUTOPAY PAYMENT")]
        assert should_flip_credit_card(rows) is True

    def test_ledger_convention_kept(self):
        """Negative purchases and positive payments need no flip."""
        rows = [_make_staged_txn(5, "-4.50", "COFFEE"), _make_staged_txn(9, "100.00", "AUTOPAY PAYMENT")]
        assert should_flip_credit_card(rows) is False

    def test_purchases_decide_without_payments(self):
        """Mostly positive purchases flip."""
        rows = [_make_staged_txn(5, "4.50", "COFFEE"), _make_staged_txn(6, "20.00", "GROCER")]
        assert should_flip_credit_card(rows) is True

    def test_tie_uses_total(self):
        """A sign tie is broken by the sign of the total."""
        rows = [_make_staged_txn(5, "10.00", "COFFEE"), _make_staged_txn(6, "-5.00", "REFUND")]
        assert should_flip_credit_card(rows) is True

    def test_override(self):
        """An explicit decision wins."""
        rows = [_make_staged_txn(5, "4.50", "COFFEE")]
        assert should_flip_credit_card(rows, override=False) is False


class TestLiabilityHelpers:
    """Tests for coerce_liability_balance and promote_apr."""

    @pytest.mark.parametrize("value, expected", [("2100.00", "-2100.00"), ("-50", "-50"), ("0", "0")])
    def test_coerce(self, value, expected):
        """Amounts owed are never positive."""
        assert coerce_liability_balance(Decimal(value)) == Decimal(expected)

    def test_existing_apr_kept(self, ledger):
        """An APR already on the account is not overwritten by default."""
        card = _make_account(ledger, AccountType.CREDIT_CARD, "Card")
        card.loan_terms = LoanTerms(apr=Decimal("0.1999"), apr_scale=2)
        promote_apr(card, Decimal("0.2499"), 2)
        assert card.loan_terms.apr == Decimal("0.1999")

    def test_accept_detected_apr(self, ledger):
        """Accepting the detected APR replaces the stored one."""
        card = _make_account(ledger, AccountType.CREDIT_CARD, "Card")
        card.loan_terms = LoanTerms(apr=Decimal("0.1999"), apr_scale=2)
        promote_apr(card, Decimal("0.2499"), 2, accept_detected=True)
        assert card.loan_terms.apr == Decimal("0.2499")

    def test_assets_ignored(self, ledger):
        """Asset accounts never get loan terms."""
        account = _make_account(ledger)
        promote_apr(account, Decimal("0.05"), 2)
        assert account.loan_terms is None


# ---------------------------------------------------------------------------
# Brokerage
# ---------------------------------------------------------------------------


class TestBrokerageCommit:
    """Tests for holdings and equity snapshots."""

    def test_statement_balance_wins_over_equity_snapshot(self, ledger):
        """A statement balance on the holdings date suppresses the derived snapshot."""
        staged = _make_staged(
            balances=[_make_staged_balance(15, "10500.00")],
            holdings=[
                _make_staged_holding(15, "VTI", "20", "5000.00"),
                _make_staged_holding(15, "SPAXX**", "5500", "5500.00"),
            ],
            suggested=AccountType.BROKERAGE,
        )
        result = commit_import(ledger, staged)
        assert result.inserted_balances == 1
        assert result.inserted_holdings == 2
        assert {s.symbol for s in ledger.securities.values()} == {"VTI", "SPAXX**"}

    def test_equity_snapshot_from_holdings(self, ledger):
        """Holdings alone produce one balance summing their market values."""
        staged = _make_staged(
            holdings=[
                _make_staged_holding(15, "VTI", "20", "5000.00"),
                _make_staged_holding(15, "BND", "10", None),
                _make_staged_holding(15, "SPAXX**", "5500", "5500.00"),
            ],
            suggested=AccountType.BROKERAGE,
        )
        result = commit_import(ledger, staged)
        assert result.inserted_balances == 1
        [snap] = ledger.balances.values()
        assert snap.balance == Decimal("10500.00")
        assert snap.import_batch_id == result.batch_id

    def test_activity_kinds_preserved(self, ledger):
        """Brokerage activity keeps its kind and symbol."""
        staged = _make_staged(
            transactions=[_make_staged_txn(15, "-2500.00", "Buy VTI", kind=TransactionKind.BUY)],
            suggested=AccountType.BROKERAGE,
        )
        commit_import(ledger, staged)
        [tx] = ledger.transactions.values()
        assert tx.kind == TransactionKind.BUY
