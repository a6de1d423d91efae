"""
OFP Extractor - Unpack vendor OFP/OPS firmware containers

Locates and decrypts the embedded manifest, then writes every partition
image it describes into an extraction directory.
"""

__version__ = "0.1.0"

from ofp_extractor.container import ContainerKind, detect_container
from ofp_extractor.extractor import ExtractionResult, decrypt, extract_container

__all__ = [
    "ContainerKind",
    "ExtractionResult",
    "decrypt",
    "detect_container",
    "extract_container",
    "__version__",
]
