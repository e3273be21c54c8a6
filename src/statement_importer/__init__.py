"""Statement importer: financial statement import and reconciliation."""

__version__ = "0.1.0"
