"""
Utility modules for errors, validation and logging
"""

from .errors import StudioError, ValidationError, UploadRejected, PersistenceFailure, NotAvailable
from .logging import setup_logger, get_logger, get_component_logger

__all__ = [
    "StudioError",
    "ValidationError",
    "UploadRejected",
    "PersistenceFailure",
    "NotAvailable",
    "setup_logger",
    "get_logger",
    "get_component_logger",
]
