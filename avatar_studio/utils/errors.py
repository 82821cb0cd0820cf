"""
Error taxonomy for Avatar Studio.

Every error is recoverable: the caller reports it and the user retries or
supplies different input. Nothing here represents a fatal state.
"""

from typing import Dict, Optional


class StudioError(Exception):
    """Base class for all Avatar Studio errors"""
    pass


class ValidationError(StudioError):
    """
    A wizard step or field edit failed validation.

    Attributes:
        step: Title of the step that failed, if any
        issues: Mapping of field name to a human readable problem
    """

    def __init__(self, message: str, issues: Optional[Dict[str, str]] = None, step: Optional[str] = None):
        super().__init__(message)
        self.issues = dict(issues or {})
        self.step = step

    @property
    def missing_fields(self):
        return list(self.issues)


class UploadRejected(StudioError):
    """A file was refused before reaching storage (wrong type, too large, empty)"""

    def __init__(self, message: str, reason: str, limit_bytes: Optional[int] = None):
        super().__init__(message)
        self.reason = reason
        self.limit_bytes = limit_bytes


class PersistenceFailure(StudioError):
    """A repository, metadata table or blob storage call failed; safe to retry"""

    def __init__(self, message: str, operation: str = ""):
        super().__init__(message)
        self.operation = operation


class NotAvailable(StudioError):
    """The requested record or capability does not exist for this document/profile"""
    pass
