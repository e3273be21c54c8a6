"""Per-import session state.

An :class:`ImportSession` carries the user's choices and the hints the
staging heuristics discovered for one document, from staging through
commit.  Nothing in it is persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from statement_importer.models import AccountType


@dataclass
class ImportSession:
    """User choices and detected hints for one import.

    Attributes:
        user_hint: The document type the user said they are importing.
        institution_name: Institution typed by the user.  Overrides the
            file-name guess.
        account_id: Existing account the user selected as the target.
        account_type_override: Type the user chose for the import.
        flip_override: Explicit credit card sign decision; ``None`` lets
            the heuristics decide.
        accept_detected_apr: Replace an APR already on the account with
            the one detected in this document.
        typical_payments: Detected typical payment per normalized label
            (``"creditCard"``, ``"loan"`` or ``"default"``).
    """

    user_hint: AccountType | None = None
    institution_name: str | None = None
    account_id: str | None = None
    account_type_override: AccountType | None = None
    flip_override: bool | None = None
    accept_detected_apr: bool = False
    typical_payments: dict[str, Decimal] = field(default_factory=dict)

    def typical_payment_hint(self, account_type: AccountType) -> Decimal | None:
        """Return the detected typical payment for a liability type.

        Looks up the label for *account_type* first and falls back to
        ``"default"``.  Asset types have no hint.
        """
        if account_type == AccountType.LOAN:
            return self.typical_payments.get("loan") or self.typical_payments.get("default")
        if account_type == AccountType.CREDIT_CARD:
            return self.typical_payments.get("creditCard") or self.typical_payments.get("default")
        return None
