"""Exceptions raised by the import pipeline and its control plane."""

from __future__ import annotations


class ParseError(ValueError):
    """Uploaded file cannot be read or its layout is unusable."""


class RowValidationError(ValueError):
    """A single row is invalid; recorded on the job, never fatal."""

    def __init__(self, message: str, field: str = "general") -> None:
        super().__init__(message)
        self.field = field
        self.message = message


class ReferenceNotFound(RowValidationError):
    """Category or vendor name is unknown and auto-creation is disabled."""

    def __init__(self, kind: str, name: str) -> None:
        super().__init__(f"{kind.capitalize()} '{name}' does not exist", field=kind)
        self.kind = kind
        self.name = name


class PersistenceError(RuntimeError):
    """A batch write failed; fatal to the job."""

    def __init__(self, message: str, first_row_index: int | None = None) -> None:
        super().__init__(message)
        self.first_row_index = first_row_index


class JobNotFound(LookupError):
    pass


class JobForbidden(PermissionError):
    pass


class JobConflict(RuntimeError):
    pass
