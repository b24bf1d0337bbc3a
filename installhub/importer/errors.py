"""Exception taxonomy for partner imports.

Only ``ImportConfigError`` and its subclasses abort a run. Row-level problems
are reported through row outcomes instead of being raised past the row loop.
"""

from __future__ import annotations

from typing import Sequence


class ImportConfigError(RuntimeError):
    """Fatal problem detected before any row is processed."""


class ProfileNotFoundError(ImportConfigError):
    """Raised when the requested import profile is missing or inactive."""

    def __init__(self, profile_id: object) -> None:
        super().__init__(f"Import profile not found or inactive: {profile_id}")
        self.profile_id = profile_id


class ProfileValidationError(ImportConfigError):
    """Raised when an import profile does not satisfy the configuration schema."""

    def __init__(self, problems: Sequence[str]) -> None:
        self.problems = tuple(problems)
        details = " ".join(self.problems) if self.problems else "Unknown problem."
        super().__init__(f"Import profile is invalid. {details}")


class SourceReadError(ImportConfigError):
    """Raised when the row source cannot be read at all."""


class RowError(Exception):
    """Base class for problems confined to a single source row."""

    def __init__(self, row_index: int, message: str) -> None:
        super().__init__(message)
        self.row_index = row_index
        self.message = message


class RowParseError(RowError):
    """Row could not be split into the header's columns."""


class MappingValidationError(RowError):
    """Row carries no identifier the reconciler could match on."""
