"""
Key tables for OFP Extractor.

Usage:
    from ofp_extractor.models import list_keysets, get_keyset, KEYSETS
"""

from .keysets import (
    DerivedKey,
    KeySetCandidate,
    FallbackKeySet,
    KEYSETS,
    FALLBACK_KEYSET,
    list_keysets,
    get_keyset,
)

__all__ = [
    "DerivedKey",
    "KeySetCandidate",
    "FallbackKeySet",
    "KEYSETS",
    "FALLBACK_KEYSET",
    "list_keysets",
    "get_keyset",
]
