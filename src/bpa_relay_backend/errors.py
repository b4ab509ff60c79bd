"""
Error taxonomy for the BPA relay pipeline.

Every failure the pipeline can report is a ``PipelineError`` subclass. The
HTTP layer maps ``status_code`` onto the response and ``message`` onto the
``{"error": ...}`` body, so these classes are the single source of truth
for what a caller sees when a run fails.
"""

from __future__ import annotations

from typing import Iterable, Optional


class PipelineError(Exception):
    """
    Base class for all terminal pipeline failures.

    Attributes:
        status_code: HTTP status to report to the caller
        detail: Optional upstream diagnostic text (response body, etc.)
    """

    status_code: int = 500

    def __init__(self, message: str, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_payload(self) -> dict[str, str]:
        if self.detail:
            return {"error": f"{self.message}: {self.detail}"}
        return {"error": self.message}


class ValidationError(PipelineError):
    status_code = 400

    def __init__(self, message: str, detail: Optional[str] = None, fields: Iterable[str] = ()) -> None:
        super().__init__(message, detail)
        self.fields = list(fields)

    @classmethod
    def missing_fields(cls, fields: Iterable[str], what: str = "field") -> "ValidationError":
        names = sorted(fields)
        return cls(f"Missing required {what}(s): {', '.join(names)}", fields=names)


class ConfigurationError(PipelineError):
    pass


class StorageError(PipelineError):
    pass


class ArchiveError(PipelineError):
    pass


class NotFoundError(PipelineError):
    pass


class AuthError(PipelineError):
    pass


class JobCreationError(PipelineError):
    pass


class UploadError(PipelineError):
    pass


class PollError(PipelineError):
    pass


class JobFailedError(PipelineError):
    pass


class JobTimeoutError(PipelineError):
    pass


class ReportFetchError(PipelineError):
    pass


class ProtocolError(PipelineError):
    pass
