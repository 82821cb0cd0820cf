"""Shared enumerations"""

from .wizard_types import (
    WizardStep,
    WizardMode,
    Provenance,
    UploadPurpose,
    ChangeSource,
    ChangeEvent,
    MBTIType,
    Language,
)

__all__ = [
    "WizardStep",
    "WizardMode",
    "Provenance",
    "UploadPurpose",
    "ChangeSource",
    "ChangeEvent",
    "MBTIType",
    "Language",
]
