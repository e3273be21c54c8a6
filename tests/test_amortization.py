"""Tests for statement_importer.amortization: liability payoff projection."""

from __future__ import annotations

from decimal import Decimal

import pytest

from statement_importer.amortization import payoff_schedule, project_account_payoff
from statement_importer.errors import MissingRequiredField
from statement_importer.models import Account, AccountType, LoanTerms


class TestPayoffSchedule:
    """Tests for payoff_schedule."""

    def test_payment_then_interest(self):
        """Each month pays first and accrues interest on the remainder."""
        rows = payoff_schedule(Decimal("1000.00"), Decimal("0.12"), Decimal("100"))
        first = rows[0]
        assert first.month == 1
        assert first.payment == Decimal("100")
        assert first.interest == Decimal("9.00")
        assert first.balance == Decimal("909.00")

    def test_schedule_ends_at_zero(self):
        """The last month pays only what is left."""
        rows = payoff_schedule(Decimal("1000.00"), Decimal("0.12"), Decimal("100"))
        assert rows[-1].balance == Decimal("0")
        assert rows[-1].payment <= Decimal("100")
        assert all(r.payment == Decimal("100") for r in rows[:-1])

    def test_zero_rate(self):
        """Without interest the balance divides evenly into payments."""
        rows = payoff_schedule(Decimal("1000.00"), Decimal("0"), Decimal("100"))
        assert len(rows) == 10
        assert sum(r.interest for r in rows) == Decimal("0")

    def test_sign_ignored(self):
        """A stored (negative) liability balance projects like its magnitude."""
        rows = payoff_schedule(Decimal("-300.00"), Decimal("0"), Decimal("100"))
        assert len(rows) == 3

    def test_nothing_owed(self):
        """A zero balance has an empty schedule."""
        assert payoff_schedule(Decimal("0"), Decimal("0.2"), Decimal("50")) == []

    def test_max_months(self):
        """The schedule never exceeds the month cap."""
        rows = payoff_schedule(Decimal("1000.00"), Decimal("0"), Decimal("10"), max_months=12)
        assert len(rows) == 12

    def test_payment_below_interest(self):
        """A payment that never reduces the balance is rejected."""
        with pytest.raises(ValueError, match="does not cover"):
            payoff_schedule(Decimal("1000.00"), Decimal("0.12"), Decimal("5"))

    def test_non_positive_payment(self):
        """Zero payments are rejected."""
        with pytest.raises(ValueError):
            payoff_schedule(Decimal("1000.00"), Decimal("0.12"), Decimal("0"))

    @pytest.mark.parametrize("apr, payment", [(None, Decimal("100")), (Decimal("0.12"), None)])
    def test_missing_terms(self, apr, payment):
        """APR and payment are both required."""
        with pytest.raises(MissingRequiredField):
            payoff_schedule(Decimal("1000.00"), apr, payment)


class TestProjectAccountPayoff:
    """Tests for project_account_payoff."""

    def test_uses_loan_terms(self):
        """The account's APR and payment drive the projection."""
        card = Account(
            name="Card",
            type=AccountType.CREDIT_CARD,
            loan_terms=LoanTerms(apr=Decimal("0"), payment_amount=Decimal("250")),
        )
        rows = project_account_payoff(card, Decimal("-1000.00"))
        assert len(rows) == 4

    def test_account_without_terms(self):
        """An account with no loan terms cannot be projected."""
        loan = Account(name="Loan", type=AccountType.LOAN)
        with pytest.raises(MissingRequiredField):
            project_account_payoff(loan, Decimal("-1000.00"))
