"""
Core module for OFP Extractor.

This module provides the single source of truth for:
- Result objects (results.py)
- Unified extract/inspect/manifest workflows (actions.py)

The CLI calls into this module rather than handling container errors
itself.
"""

from .results import OperationResult
from .actions import (
    entry_to_dict,
    extract_firmware,
    inspect_container,
    read_manifest,
)

__all__ = [
    # Results
    "OperationResult",
    # Actions
    "entry_to_dict",
    "extract_firmware",
    "inspect_container",
    "read_manifest",
]
