"""Tests for statement_importer.store: JSON persistence and units of work."""

from __future__ import annotations

import json
from decimal import Decimal

import pytest

from conftest import _make_account, _make_balance, _make_txn
from statement_importer.errors import StorageCommitFailed
from statement_importer.models import AccountType, LoanTerms
from statement_importer.store import Ledger

# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class TestLedgerPersistence:
    """Tests for Ledger.save() and Ledger.load()."""

    def test_round_trip(self, file_ledger):
        """Entities survive a save and reload unchanged."""
        with file_ledger.unit_of_work():
            card = _make_account(file_ledger, AccountType.CREDIT_CARD, "Card", "Chase")
            card.loan_terms = LoanTerms(apr=Decimal("0.2499"), apr_scale=2, payment_amount=Decimal("42"))
            tx = _make_txn(file_ledger, card, 15, "-4.50", "Coffee Shop")
            snap = _make_balance(file_ledger, card, 31, "-2100.00")

        loaded = Ledger.load(file_ledger.path)
        assert loaded.accounts[card.id] == card
        assert loaded.transactions[tx.id] == tx
        assert loaded.balances[snap.id] == snap

    def test_decimals_written_as_strings(self, file_ledger):
        """Amounts keep their exact text on disk."""
        with file_ledger.unit_of_work():
            account = _make_account(file_ledger)
            _make_txn(file_ledger, account, 15, "-4.50", "Coffee Shop")

        raw = json.loads(file_ledger.path.read_text(encoding="utf-8"))
        assert raw["transactions"][0]["amount"] == "-4.50"
        assert raw["transactions"][0]["date_posted"] == "2026-01-15"
        assert raw["accounts"][0]["type"] == "checking"

    def test_missing_file_is_empty(self, tmp_path):
        """Loading a path that does not exist yields an empty ledger."""
        ledger = Ledger.load(tmp_path / "nope.json")
        assert ledger.accounts == {}
        assert ledger.path == tmp_path / "nope.json"

    def test_corrupt_file_raises(self, tmp_path):
        """Undecodable JSON is a storage failure."""
        path = tmp_path / "ledger.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(StorageCommitFailed):
            Ledger.load(path)

    def test_in_memory_save_is_noop(self, ledger):
        """A ledger without a path never touches disk."""
        with ledger.unit_of_work():
            _make_account(ledger)
        assert len(ledger.accounts) == 1


# ---------------------------------------------------------------------------
# Unit of work
# ---------------------------------------------------------------------------


class TestUnitOfWork:
    """Tests for rollback semantics."""

    def test_exception_rolls_back_inserts(self, ledger):
        """Entities added in a failed block disappear."""
        with pytest.raises(RuntimeError):
            with ledger.unit_of_work():
                _make_account(ledger)
                raise RuntimeError("boom")
        assert ledger.accounts == {}

    def test_exception_rolls_back_mutations(self, ledger):
        """Field changes made in a failed block are undone."""
        with ledger.unit_of_work():
            account = _make_account(ledger)
        with pytest.raises(RuntimeError):
            with ledger.unit_of_work():
                ledger.accounts[account.id].name = "Renamed"
                raise RuntimeError("boom")
        assert ledger.accounts[account.id].name == "Checking"

    def test_failed_save_rolls_back(self, tmp_path):
        """When the file cannot be written the in-memory state is restored."""
        target = tmp_path / "ledger.json"
        target.mkdir()
        ledger = Ledger(target)
        with pytest.raises(StorageCommitFailed):
            with ledger.unit_of_work():
                _make_account(ledger)
        assert ledger.accounts == {}
        assert list(tmp_path.glob("*.tmp")) == []


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestLedgerQueries:
    """Tests for collection helpers."""

    def test_account_is_empty(self, ledger):
        """Any transaction, balance or holding makes an account non-empty."""
        account = _make_account(ledger)
        assert ledger.account_is_empty(account.id)
        _make_balance(ledger, account, 31, "100.00")
        assert not ledger.account_is_empty(account.id)

    def test_fetch_or_create_security(self, ledger):
        """Securities are unique by symbol."""
        first = ledger.fetch_or_create_security("VTI")
        again = ledger.fetch_or_create_security("VTI")
        assert first is again
        assert ledger.security_symbol(first.id) == "VTI"
        assert len(ledger.securities) == 1

    def test_batch_queries(self, ledger):
        """Children are found by their batch id."""
        account = _make_account(ledger)
        _make_txn(ledger, account, 1, "10.00", batch_id="b1")
        _make_txn(ledger, account, 2, "20.00", batch_id="b2")
        assert [t.amount for t in ledger.batch_transactions("b1")] == [Decimal("10.00")]

    def test_add_rejects_non_entities(self, ledger):
        """Only ledger entity types can be stored."""
        with pytest.raises(TypeError):
            ledger.add("not an entity")
