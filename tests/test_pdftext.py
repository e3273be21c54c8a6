"""Tests for statement_importer.pdftext: page text to statement rows.

All inputs are plain page text, so no PDF files are needed.
"""

from __future__ import annotations

import pytest

from statement_importer.errors import FormatUnrecognized
from statement_importer.pdftext import (
    MODE_SUMMARY,
    MODE_TRANSACTIONS,
    PAGE_BREAK,
    PDF_HEADERS,
    balance_summary_section,
    extract_statement_rows,
    interest_charges_section,
    is_checking_header,
    is_savings_header,
    sanitize_pdf_amount,
    statement_lines,
)

# ---------------------------------------------------------------------------
# Row extraction
# ---------------------------------------------------------------------------


class TestExtractStatementRows:
    """Tests for extract_statement_rows."""

    def test_transactions_mode_rows(self, checking_pages):
        """Dated lines become rows signed by their section."""
        rows, headers = extract_statement_rows(checking_pages, MODE_TRANSACTIONS)
        assert headers == PDF_HEADERS
        assert rows[0] == ["01/05/2026", "Payroll Deposit", "500.00", "", "checking"]
        assert rows[1] == ["01/12/2026", "Electric Company", "-50.00", "", "checking"]

    def test_statement_balance_rows_appended(self, checking_pages):
        """Beginning balance is dated the day before the first row; ending on the last."""
        rows, _ = extract_statement_rows(checking_pages, MODE_TRANSACTIONS)
        assert rows[2] == ["01/04/2026", "Statement Beginning Balance", "0", "1000.00", "unknown"]
        assert rows[3] == ["01/12/2026", "Statement Ending Balance", "0", "1450.00", "unknown"]

    def test_summary_mode_keeps_only_statement_rows(self, checking_pages):
        """Summary mode drops activity rows when statement balances exist."""
        rows, _ = extract_statement_rows(checking_pages, MODE_SUMMARY)
        assert [r[1] for r in rows] == ["Statement Beginning Balance", "Statement Ending Balance"]

    def test_no_rows_raises(self):
        """Text without any dated line is not a statement."""
        with pytest.raises(FormatUnrecognized):
            extract_statement_rows(["Dear customer, thank you for banking with us."])

    def test_year_follows_statement_period(self):
        """A period spanning New Year assigns each month the right year."""
        page = "12/15/2025 - 01/14/2026\nCHECKING\n12/20 Grocery Store 40.00\n01/05 Refund 10.00\n"
        rows, _ = extract_statement_rows([page], MODE_TRANSACTIONS)
        assert rows[0][0] == "12/20/2025"
        assert rows[1][0] == "01/05/2026"


class TestStatementLines:
    """Tests for joining page text into lines."""

    def test_page_break_between_pages(self):
        """Pages are separated by a marker line; blank lines vanish."""
        lines = statement_lines(["a\n\n b ", "c"])
        assert lines == ["a", "b", PAGE_BREAK, "c"]


class TestSanitizePdfAmount:
    """Tests for PDF money token normalization."""

    @pytest.mark.parametrize(
        "token, expected",
        [
            ("(1,234.56)", "-1234.56"),
            ("45.00-", "-45.00"),
            ("$12.00 DR", "-12.00"),
            ("45.00 CR", "45.00"),
            ("-$7.25", "-7.25"),
        ],
    )
    def test_sign_markers(self, token, expected):
        """Parentheses, trailing minus and DR are negative; CR is positive."""
        assert sanitize_pdf_amount(token) == expected


class TestSectionHeaders:
    """Tests for checking/savings header detection."""

    def test_savings_header(self):
        """Short savings titles are headers."""
        assert is_savings_header("SAVINGS SUMMARY")
        assert is_savings_header("Chase Savings")

    def test_incidental_mention_is_not_header(self):
        """Transfer lines mentioning savings are not headers."""
        assert not is_savings_header("Online transfer to savings")

    def test_checking_header(self):
        """Checking account titles are headers."""
        assert is_checking_header("CHECKING SUMMARY")
        assert not is_checking_header("Transfer from checking")


# ---------------------------------------------------------------------------
# Section extraction
# ---------------------------------------------------------------------------

CARD_TEXT = """\
ACCOUNT SUMMARY
New Balance $2,100.00
INTEREST CHARGES
Annual Percentage Rate (APR) for Purchases 24.99%
Cash Advances 29.99%
FEES AND ADJUSTMENTS
Late fee 40.00
"""

BANK_TEXT = """\
Your Accounts
BALANCE SUMMARY
Checking 1,000.00 1,450.00
Savings 5,000.00 5,010.00
ACCOUNT ACTIVITY DETAILS
01/05 Payroll 500.00
"""


class TestInterestChargesSection:
    """Tests for interest_charges_section."""

    def test_section_stops_at_next_caps_header(self):
        """The window ends before an unrelated all-caps header."""
        section = interest_charges_section(CARD_TEXT)
        assert section is not None
        assert section.startswith("INTEREST CHARGES")
        assert "24.99%" in section
        assert "Late fee" not in section

    def test_no_anchor(self):
        """Text without interest wording has no section."""
        assert interest_charges_section("Checking activity only") is None

    def test_requires_apr_wording(self):
        """An interest heading without APR wording is rejected."""
        assert interest_charges_section("Interest charges\nnone this period") is None


class TestBalanceSummarySection:
    """Tests for balance_summary_section."""

    def test_block_ends_at_next_header(self):
        """The block runs from its title to the next all-caps header."""
        block = balance_summary_section(BANK_TEXT)
        assert block == "BALANCE SUMMARY\nChecking 1,000.00 1,450.00\nSavings 5,000.00 5,010.00"

    def test_absent(self):
        """Text without a balance summary yields None."""
        assert balance_summary_section("ACCOUNT ACTIVITY\n01/05 Payroll 500.00") is None
