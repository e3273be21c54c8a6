"""Debt payoff projection for liability accounts.

Each month the payment is applied first, then interest accrues on what is
left at ``apr / 12``.  Money is rounded to cents after every step.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from statement_importer.errors import MissingRequiredField
from statement_importer.models import Account

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


@dataclass
class PayoffRow:
    """One month of a payoff schedule."""

    month: int
    payment: Decimal
    interest: Decimal
    balance: Decimal


def payoff_schedule(
    balance: Decimal,
    apr: Decimal | None,
    payment: Decimal | None,
    max_months: int = 600,
) -> list[PayoffRow]:
    """Project monthly payments until *balance* reaches zero.

    Args:
        balance: Amount owed.  The sign is ignored.
        apr: Annual rate as a fraction (``0.2499``).
        payment: Monthly payment.  The final month pays only what is left.
        max_months: Upper bound on the schedule length.

    Returns:
        One :class:`PayoffRow` per month; empty when nothing is owed.

    Raises:
        MissingRequiredField: If *apr* or *payment* is ``None``.
        ValueError: If the payment is not positive or never reduces the
            balance.
    """
    if apr is None:
        raise MissingRequiredField("apr")
    if payment is None:
        raise MissingRequiredField("payment")
    if payment <= 0:
        raise ValueError("Payment must be positive")

    remaining = abs(balance).quantize(CENT, rounding=ROUND_HALF_UP)
    monthly_rate = apr / 12
    rows: list[PayoffRow] = []
    for month in range(1, max_months + 1):
        if remaining <= 0:
            break
        paid = min(payment, remaining)
        base = remaining - paid
        interest = (base * monthly_rate).quantize(CENT, rounding=ROUND_HALF_UP)
        after = base + interest
        if month == 1 and after >= remaining:
            raise ValueError(
                f"Payment {payment} does not cover the monthly interest on {remaining}"
            )
        rows.append(PayoffRow(month=month, payment=paid, interest=interest, balance=after))
        remaining = after
    logger.debug("Payoff schedule: %d month(s), %s left", len(rows), remaining)
    return rows


def project_account_payoff(account: Account, balance: Decimal, max_months: int = 600) -> list[PayoffRow]:
    """Project payoff for *account* using its loan terms.

    Raises:
        MissingRequiredField: If the account has no APR or payment amount.
    """
    terms = account.loan_terms
    apr = terms.apr if terms else None
    payment = terms.payment_amount if terms else None
    return payoff_schedule(balance, apr, payment, max_months)
