"""
Data layer for Avatar Studio.

This package contains the profile and knowledge models and the storage
collaborators behind them.
"""

from . import models

__all__ = ["models"]
