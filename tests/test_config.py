"""Tests for statement_importer.config -- loading, saving, and initialization."""

from decimal import Decimal
from pathlib import Path

import pytest

from statement_importer.config import initialize, load_config, save_config
from statement_importer.models import AppConfig

# ---------------------------------------------------------------------------
# load_config
# ---------------------------------------------------------------------------


class TestLoadConfig:
    """Tests for loading config.toml into an AppConfig."""

    def test_loads_default_config(self, tmp_path: Path):
        """Default config.toml produced by initialize() is loadable."""
        initialize(tmp_path)
        config = load_config(tmp_path)

        assert isinstance(config, AppConfig)
        assert config.ledger_path == "ledger/ledger.json"
        assert config.inbox_dir == "inbox"
        assert config.default_currency == "USD"
        assert config.transfer_date_window == 3

    def test_default_rules_and_limits(self, tmp_path: Path):
        """Minimum-payment rules and scan caps match the dataclass defaults."""
        initialize(tmp_path)
        config = load_config(tmp_path)

        assert config.minimum_payment.min_amount == Decimal("25")
        assert config.minimum_payment.max_ratio == Decimal("0.10")
        assert config.minimum_payment.whole_dollar is True
        assert config.scan_limits == AppConfig().scan_limits

    def test_partial_config(self, tmp_path: Path):
        """Missing sections and keys fall back to defaults."""
        (tmp_path / "config.toml").write_text(
            """\
[general]
default_currency = "EUR"

[minimum_payment]
min_amount = 40

[scan_limits]
sample_rows = 10
""",
            encoding="utf-8",
        )
        config = load_config(tmp_path)

        assert config.default_currency == "EUR"
        assert config.ledger_path == "ledger/ledger.json"
        assert config.minimum_payment.min_amount == Decimal("40")
        assert config.minimum_payment.target_ratio == Decimal("0.02")
        assert config.scan_limits.sample_rows == 10
        assert config.scan_limits.apr_table_lines == 120
        assert config.transfer_date_window == 3

    def test_missing_config_raises(self, tmp_path: Path):
        """A directory without config.toml cannot be loaded."""
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path)


# ---------------------------------------------------------------------------
# save_config
# ---------------------------------------------------------------------------


class TestSaveConfig:
    """Tests for writing config.toml."""

    def test_round_trip(self, tmp_path: Path):
        """Saved values load back unchanged."""
        config = AppConfig(default_currency="CAD", transfer_date_window=5)
        config.minimum_payment.min_ratio = Decimal("0.015")
        config.scan_limits.apr_lookahead_lines = 4

        save_config(tmp_path, config)
        loaded = load_config(tmp_path)

        assert loaded == config

    def test_decimals_written_as_strings(self, tmp_path: Path):
        """Decimal settings keep their exact text."""
        save_config(tmp_path, AppConfig())
        text = (tmp_path / "config.toml").read_text(encoding="utf-8")
        assert 'max_ratio = "0.10"' in text


# ---------------------------------------------------------------------------
# initialize
# ---------------------------------------------------------------------------


class TestInitialize:
    """Tests for project initialization."""

    def test_creates_structure(self, tmp_path: Path):
        """initialize() creates the inbox, the ledger directory and config.toml."""
        initialize(tmp_path)

        assert (tmp_path / "inbox").is_dir()
        assert (tmp_path / "ledger").is_dir()
        assert (tmp_path / "config.toml").is_file()

    def test_does_not_overwrite(self, tmp_path: Path):
        """An existing config.toml is left untouched."""
        (tmp_path / "config.toml").write_text("# mine\n", encoding="utf-8")
        initialize(tmp_path)
        assert (tmp_path / "config.toml").read_text(encoding="utf-8") == "# mine\n"

    def test_idempotent(self, tmp_path: Path):
        """Running initialize() twice is harmless."""
        initialize(tmp_path)
        initialize(tmp_path)
        assert load_config(tmp_path) == AppConfig()
