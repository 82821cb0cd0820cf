"""
Core modules for Avatar Studio
"""

from .change_feed import ChangeFeed, Subscription
from .draft_cache import DraftCache
from .knowledge_ledger import KnowledgeLedger, merge_documents
from .wizard_controller import WizardController
from .studio import StudioServices

__all__ = [
    "ChangeFeed",
    "Subscription",
    "DraftCache",
    "KnowledgeLedger",
    "merge_documents",
    "WizardController",
    "StudioServices",
]
