"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the ledger models used by ``ledger_ingest``.
"""

from .ledger import (
    Base,
    LiAccount,
    LiAccountLink,
    LiCategory,
    LiCostCenter,
    LiImportBatch,
    LiPattern,
    LiSuggestion,
    LiTransaction,
)

__all__ = [
    "Base",
    "LiAccount",
    "LiAccountLink",
    "LiCategory",
    "LiCostCenter",
    "LiImportBatch",
    "LiPattern",
    "LiSuggestion",
    "LiTransaction",
]
