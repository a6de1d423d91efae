"""
Utility modules for OFP Extractor.

This package groups the pure cipher helpers shared by the key resolver and
the extraction pipeline.
"""

# Re-export submodules so `from ..utils import ops_cipher` works.
from . import crypto as crypto
from . import ops_cipher as ops_cipher

from .crypto import (
    swap_nibbles,
    deobfuscate,
    obfuscate,
    key_shuffle,
    md5_key,
    aes_cfb_decrypt,
    aes_cfb_encrypt,
)
from .ops_cipher import Mbox, MBOXES, custom_decrypt, custom_encrypt, try_decrypt_trailer

__all__ = [
    # Submodules
    "crypto",
    "ops_cipher",
    "swap_nibbles",
    "deobfuscate",
    "obfuscate",
    "key_shuffle",
    "md5_key",
    "aes_cfb_decrypt",
    "aes_cfb_encrypt",
    "Mbox",
    "MBOXES",
    "custom_decrypt",
    "custom_encrypt",
    "try_decrypt_trailer",
]
