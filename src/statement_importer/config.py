"""Configuration loading, writing, and project initialization.

Reads TOML config files using stdlib ``tomllib`` and writes them using
``tomli_w``.  Depends only on ``models.py``.
"""

from __future__ import annotations

import sys
from decimal import Decimal
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[no-redef]

import tomli_w

from statement_importer.models import AppConfig, MinimumPaymentRules, ScanLimits

# ---------------------------------------------------------------------------
# Default file content
# ---------------------------------------------------------------------------

_DEFAULT_CONFIG_TOML = """\
# Statement importer configuration

[general]
ledger_path = "ledger/ledger.json"
inbox_dir = "inbox"
default_currency = "USD"

[transfers]
date_window_days = 3

# Plausibility filter for a credit card minimum payment read from a PDF.
[minimum_payment]
min_amount = "25"
min_ratio = "0.01"
max_ratio = "0.10"
target_ratio = "0.02"
whole_dollar = true

# Caps for the scan-forward heuristics.
[scan_limits]
apr_table_lines = 120
apr_lookahead_lines = 8
payment_window_lines = 40
payment_lookahead_lines = 2
card_summary_pages = 3
interest_section_chars = 2500
balance_summary_lines = 120
sample_rows = 50
"""

# Directories that ``initialize`` creates.
_INIT_DIRS = [
    "inbox",
    "ledger",
]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(root: Path) -> AppConfig:
    """Load ``config.toml`` from *root* and return an :class:`AppConfig`.

    Missing sections and keys take their defaults.  Decimal settings may
    be written as strings or numbers.

    Args:
        root: Project root directory containing ``config.toml``.

    Returns:
        A fully-populated :class:`AppConfig` instance.

    Raises:
        FileNotFoundError: If ``config.toml`` does not exist.
    """
    data = _read_toml(root / "config.toml")

    general = data.get("general", {})
    transfers = data.get("transfers", {})
    payment = data.get("minimum_payment", {})
    limits = data.get("scan_limits", {})

    rule_defaults = MinimumPaymentRules()
    rules = MinimumPaymentRules(
        min_amount=_decimal(payment.get("min_amount"), rule_defaults.min_amount),
        min_ratio=_decimal(payment.get("min_ratio"), rule_defaults.min_ratio),
        max_ratio=_decimal(payment.get("max_ratio"), rule_defaults.max_ratio),
        target_ratio=_decimal(payment.get("target_ratio"), rule_defaults.target_ratio),
        whole_dollar=payment.get("whole_dollar", rule_defaults.whole_dollar),
    )

    limit_defaults = ScanLimits()
    scan_limits = ScanLimits(
        **{
            name: int(limits.get(name, getattr(limit_defaults, name)))
            for name in limit_defaults.__dataclass_fields__
        }
    )

    return AppConfig(
        ledger_path=general.get("ledger_path", "ledger/ledger.json"),
        inbox_dir=general.get("inbox_dir", "inbox"),
        default_currency=general.get("default_currency", "USD"),
        transfer_date_window=transfers.get("date_window_days", 3),
        minimum_payment=rules,
        scan_limits=scan_limits,
    )


def save_config(root: Path, config: AppConfig) -> None:
    """Write *config* to ``config.toml`` under *root*, replacing the file.

    Decimals are written as strings so they round-trip exactly.
    """
    rules = config.minimum_payment
    data = {
        "general": {
            "ledger_path": config.ledger_path,
            "inbox_dir": config.inbox_dir,
            "default_currency": config.default_currency,
        },
        "transfers": {"date_window_days": config.transfer_date_window},
        "minimum_payment": {
            "min_amount": str(rules.min_amount),
            "min_ratio": str(rules.min_ratio),
            "max_ratio": str(rules.max_ratio),
            "target_ratio": str(rules.target_ratio),
            "whole_dollar": rules.whole_dollar,
        },
        "scan_limits": {
            name: getattr(config.scan_limits, name)
            for name in config.scan_limits.__dataclass_fields__
        },
    }
    (root / "config.toml").write_text(tomli_w.dumps(data), encoding="utf-8")


def initialize(target_dir: Path) -> None:
    """Create the standard directory structure and default config file.

    Idempotent: existing directories are left alone and existing files
    are **not** overwritten.

    Args:
        target_dir: The directory in which to create the project structure.
    """
    target_dir = Path(target_dir)
    target_dir.mkdir(parents=True, exist_ok=True)

    for d in _INIT_DIRS:
        (target_dir / d).mkdir(parents=True, exist_ok=True)

    _write_if_missing(target_dir / "config.toml", _DEFAULT_CONFIG_TOML)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _read_toml(path: Path) -> dict:
    """Read and parse a TOML file."""
    with open(path, "rb") as f:
        return tomllib.load(f)


def _decimal(value, default: Decimal) -> Decimal:
    if value is None:
        return default
    return Decimal(str(value))


def _write_if_missing(path: Path, content: str) -> None:
    """Write *content* to *path* only if the file does not already exist."""
    if not path.exists():
        path.write_text(content, encoding="utf-8")
