"""Exception taxonomy for the import pipeline.

Parsing and classification errors are recoverable: the caller reports
them and discards the staged state.  Commit errors mean nothing was
applied and the whole operation can be retried.
"""

from __future__ import annotations


class StatementImportError(Exception):
    """Base class for all importer errors."""


class FormatUnrecognized(StatementImportError):
    """No parser could interpret the document."""

    def __init__(self, message: str = "Unrecognized statement format.") -> None:
        super().__init__(message)


class InvalidTabularData(StatementImportError):
    """The header row is empty or the rows are not tabular."""

    def __init__(self, message: str = "Invalid or empty CSV data.") -> None:
        super().__init__(message)


class ParseFailure(StatementImportError):
    """A parser recognized the shape but could not extract usable data."""


class MissingRequiredField(StatementImportError):
    """A calculation needs an input the caller has not supplied."""

    def __init__(self, field_name: str) -> None:
        self.field_name = field_name
        super().__init__(f"Missing required field: {field_name}")


class StorageCommitFailed(StatementImportError):
    """The atomic save failed.  No mutation was applied."""
