"""Account resolution.

Maps a (type, institution) pair onto a ledger account.  Institution names
are compared in normalized form so "Fidelity", "Fidelity Investments" and
"Fidelity Investments, Inc." resolve to the same account.
"""

from __future__ import annotations

import logging
import re

from statement_importer.models import Account, AccountType
from statement_importer.store import Ledger

logger = logging.getLogger(__name__)

_SEPARATORS_RE = re.compile(r"[,./\-_&()\[\]{}:]")

_GENERIC_TOKENS = frozenset({
    "investment", "investments", "inc", "corp", "co", "company", "llc",
    "na", "services", "financial", "fsb",
})

_DISPLAY_NAMES = {
    AccountType.CHECKING: "Checking",
    AccountType.SAVINGS: "Savings",
    AccountType.CREDIT_CARD: "Credit Card",
    AccountType.LOAN: "Loan",
    AccountType.CASH: "Cash",
    AccountType.BROKERAGE: "Brokerage",
    AccountType.OTHER: "Account",
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def normalize_institution_name(raw: str | None) -> str:
    """Reduce an institution name to a comparison key.

    Punctuation becomes whitespace, generic corporate tokens ("inc",
    "llc", "services", "investments", ...) are dropped, and the remaining
    tokens are joined without spaces.

    >>> normalize_institution_name("Fidelity Investments, Inc.")
    'fidelity'
    """
    if not raw:
        return ""
    spaced = _SEPARATORS_RE.sub(" ", raw.lower())
    return "".join(t for t in spaced.split() if t not in _GENERIC_TOKENS)


def find_account(
    ledger: Ledger, account_type: AccountType, institution_name: str | None
) -> Account | None:
    """Return the first account with *account_type* and a matching institution.

    Accounts whose normalized institution is empty never match.
    """
    needle = normalize_institution_name(institution_name)
    if not needle:
        return None
    for account in ledger.accounts.values():
        if account.type != account_type:
            continue
        if normalize_institution_name(account.institution_name) == needle:
            return account
    return None


def resolve_account(
    ledger: Ledger,
    account_type: AccountType,
    institution_name: str | None,
    prefer_existing: Account | None = None,
    currency: str = "USD",
) -> Account:
    """Find or create the account that should receive an import.

    Resolution order:

    1. *prefer_existing*, when its type matches.  If both it and the import
       carry institution names and they normalize differently, the import
       switches to the matching account for the new institution (or a new
       one).  An existing account without an institution adopts the
       import's.
    2. An existing account with the same type and normalized institution.
    3. A new account, added to *ledger*.

    Args:
        ledger: Target ledger.  Must be inside a unit of work when a new
            account may be created.
        account_type: Type the import resolved to.
        institution_name: Institution chosen by the user or guessed from
            the file name.
        prefer_existing: Account the user selected, if any.
        currency: Currency code for a new account.

    Returns:
        The resolved account.
    """
    inst = (institution_name or "").strip() or None

    if prefer_existing is not None and prefer_existing.type == account_type:
        current = (prefer_existing.institution_name or "").strip()
        if inst is None:
            return prefer_existing
        if not current:
            prefer_existing.institution_name = inst
            return prefer_existing
        if normalize_institution_name(current) == normalize_institution_name(inst):
            return prefer_existing
        found = find_account(ledger, account_type, inst)
        if found is not None:
            logger.info("Switching to existing %s account for %s", account_type.value, inst)
            return found
        return _create(ledger, account_type, inst, currency)

    if inst is not None:
        found = find_account(ledger, account_type, inst)
        if found is not None:
            logger.debug("Reusing %s account %s for %s", account_type.value, found.id, inst)
            return found
    return _create(ledger, account_type, inst, currency)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _create(
    ledger: Ledger, account_type: AccountType, institution_name: str | None, currency: str
) -> Account:
    name = institution_name or _DISPLAY_NAMES[account_type]
    if institution_name and account_type in (AccountType.CHECKING, AccountType.SAVINGS):
        name = f"{institution_name} {_DISPLAY_NAMES[account_type]}"
    account = Account(
        name=name,
        type=account_type,
        institution_name=institution_name,
        currency_code=currency,
    )
    ledger.add(account)
    logger.info("Created %s account %r", account_type.value, account.name)
    return account
