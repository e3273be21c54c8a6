"""Tests for statement_importer.importer: staging files end to end."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from conftest import _make_staged, _make_staged_balance
from statement_importer.errors import FormatUnrecognized
from statement_importer.importer import (
    BROKERAGE_ACTIVITY_ONLY,
    LOW_CONFIDENCE_PDF,
    MANUAL_ENTRY_HINT,
    apply_liability_safety_net,
    filter_liability_balances,
    stage_file,
    stage_pdf_pages,
    stage_rows,
    stage_with_mapping,
)
from statement_importer.models import AccountType
from statement_importer.parsers.mapping import BankColumnMapping
from statement_importer.pdftext import MODE_SUMMARY
from statement_importer.session import ImportSession

# ---------------------------------------------------------------------------
# CSV staging
# ---------------------------------------------------------------------------


class TestStageCsv:
    """Tests for stage_file on tabular statements."""

    def test_checking_export(self, checking_csv: Path):
        """A bank export is parsed, typed and attributed to its institution."""
        session = ImportSession()
        result = stage_file(checking_csv, session=session)

        assert result.staged.parser_id == "bank.csv"
        assert result.staged.source_file_name == "chase_checking.csv"
        assert result.staged.suggested_account_type == AccountType.CHECKING
        assert result.confidence == "high"
        assert len(result.staged.transactions) == 3
        assert session.institution_name == "Chase"

    def test_user_institution_kept(self, checking_csv: Path):
        """An institution typed by the user is not replaced by the guess."""
        session = ImportSession(institution_name="My Credit Union")
        stage_file(checking_csv, session=session)
        assert session.institution_name == "My Credit Union"

    def test_brokerage_activity_only(self, brokerage_csv: Path):
        """Activity without balances or holdings carries a net worth note."""
        result = stage_file(brokerage_csv)
        assert result.staged.parser_id == "brokerage.csv"
        assert result.staged.suggested_account_type == AccountType.BROKERAGE
        assert BROKERAGE_ACTIVITY_ONLY in result.messages

    def test_fidelity_statement(self, fidelity_csv: Path):
        """A Fidelity statement yields its ending value and positions."""
        result = stage_file(fidelity_csv)
        assert result.staged.parser_id == "fidelity.statement.csv"
        assert len(result.staged.balances) == 1
        assert {h.symbol for h in result.staged.holdings} == {"VTI", "SPAXX**"}
        assert BROKERAGE_ACTIVITY_ONLY not in result.messages

    def test_plain_bank_export_rows(self):
        """A Date/Description/Amount export is staged by the bank parser."""
        result = stage_rows(["Date", "Description", "Amount"], [["01/15/2026", "Coffee Shop", "-4.50"]], "stmt.csv")

        assert result.staged.parser_id == "bank.csv"
        assert result.staged.source_file_name == "stmt.csv"
        [txn] = result.staged.transactions
        assert (txn.date_posted, txn.amount, txn.payee) == (date(2026, 1, 15), Decimal("-4.50"), "Coffee Shop")

    def test_bank_export_with_running_balance(self):
        """A running Balance column stays on the bank parser and yields balances."""
        result = stage_rows(
            ["Date", "Description", "Amount", "Balance"],
            [["01/15/2026", "Coffee Shop", "-4.50", "95.50"]],
            "stmt.csv",
        )

        assert result.staged.parser_id == "bank.csv"
        assert len(result.staged.transactions) == 1
        assert [b.balance for b in result.staged.balances] == [Decimal("100.00"), Decimal("95.50")]

    def test_unknown_layout(self, unknown_tsv: Path):
        """Headers no parser accepts ask for a manual mapping."""
        with pytest.raises(FormatUnrecognized, match="Map the columns manually"):
            stage_file(unknown_tsv)

    def test_unsupported_extension(self, tmp_path: Path):
        """Only CSV, TSV and PDF files are accepted."""
        with pytest.raises(FormatUnrecognized):
            stage_file(tmp_path / "statement.xlsx")


class TestStageWithMapping:
    """Tests for stage_with_mapping."""

    def test_manual_mapping(self, unknown_tsv: Path):
        """User-chosen columns stage the rows as bank activity."""
        mapping = BankColumnMapping(date_index=0, description_index=1, amount_index=2)
        result = stage_with_mapping(unknown_tsv, mapping)
        assert result.staged.parser_id == "mapping.bank"
        assert result.staged.source_file_name == "unknown_layout.tsv"
        assert [t.payee for t in result.staged.transactions] == ["something"]
        assert result.confidence == "high"


# ---------------------------------------------------------------------------
# PDF staging
# ---------------------------------------------------------------------------


class TestStagePdfPages:
    """Tests for stage_pdf_pages on extracted page text."""

    def test_summary_mode_low_confidence(self, checking_pages):
        """A short statement stages its balances with a low confidence note."""
        result = stage_pdf_pages(checking_pages, "statement.pdf", MODE_SUMMARY)

        assert result.staged.parser_id == "pdf.summary"
        assert result.confidence == "low"
        assert result.messages == [MANUAL_ENTRY_HINT, LOW_CONFIDENCE_PDF]
        assert result.staged.balances


# ---------------------------------------------------------------------------
# Liability classification
# ---------------------------------------------------------------------------


class TestLiabilitySafetyNet:
    """Tests for apply_liability_safety_net."""

    def test_relabels_asset_balances_for_card(self):
        """A card import whose balances look like a bank's is relabelled."""
        staged = _make_staged(
            balances=[_make_staged_balance(31, "2100.00", label="checking")],
            suggested=AccountType.CREDIT_CARD,
        )
        assert apply_liability_safety_net(staged, None) is True
        assert staged.balances[0].source_account_label == "creditcard"

    def test_user_said_loan(self):
        """A loan hint relabels as loan."""
        staged = _make_staged(balances=[_make_staged_balance(31, "150000.00")], suggested=AccountType.LOAN)
        assert apply_liability_safety_net(staged, AccountType.LOAN) is True
        assert staged.balances[0].source_account_label == "loan"

    def test_user_said_card(self):
        """A credit card hint applies even to a checking suggestion."""
        staged = _make_staged(balances=[_make_staged_balance(31, "2100.00")], suggested=AccountType.CHECKING)
        assert apply_liability_safety_net(staged, AccountType.CREDIT_CARD) is True

    def test_mixed_labels_untouched(self):
        """Balances already labelled as a liability are left alone."""
        staged = _make_staged(
            balances=[
                _make_staged_balance(31, "2100.00", label="Visa"),
                _make_staged_balance(31, "900.00", label="checking"),
            ],
            suggested=AccountType.CREDIT_CARD,
        )
        assert apply_liability_safety_net(staged, None) is False
        assert staged.balances[1].source_account_label == "checking"

    def test_asset_import_untouched(self):
        """Bank imports are never relabelled."""
        staged = _make_staged(balances=[_make_staged_balance(31, "900.00", label="checking")])
        assert apply_liability_safety_net(staged, None) is False


class TestFilterLiabilityBalances:
    """Tests for filter_liability_balances."""

    def test_drops_asset_labels(self):
        """Liability imports keep only liability and unlabelled balances."""
        staged = _make_staged(
            balances=[
                _make_staged_balance(31, "2100.00", label="creditCard"),
                _make_staged_balance(31, "900.00", label="checking"),
                _make_staged_balance(30, "2000.00"),
            ],
            suggested=AccountType.CREDIT_CARD,
        )
        assert filter_liability_balances(staged, AccountType.CREDIT_CARD) == 1
        assert len(staged.balances) == 2

    def test_asset_import_keeps_all(self):
        """Asset imports are not filtered."""
        staged = _make_staged(balances=[_make_staged_balance(31, "900.00", label="checking")])
        assert filter_liability_balances(staged, AccountType.CHECKING) == 0
        assert filter_liability_balances(staged, None) == 0
