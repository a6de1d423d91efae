"""
Shared cryptographic/transformation helpers.

Today this is the OFP key-derivation scheme: nibble-swapped XOR
obfuscation of the embedded constants, MD5 hex truncation, and the
AES-128-CFB transform used for both the manifest and entry prefixes.
"""

from __future__ import annotations

import hashlib

from Crypto.Cipher import AES


AES_BLOCK_SIZE = 16
KEY_HEX_CHARS = 16


def swap_nibbles(value: int) -> int:
    """Swap the high and low nibble of a byte."""
    return ((value << 4) | (value >> 4)) & 0xFF


def deobfuscate(data: bytes, mask: bytes) -> bytes:
    """
    Recover an embedded key constant.

    Each byte is XORed with the matching mask byte, then nibble-swapped.
    """
    if len(mask) < len(data):
        raise ValueError(f"Mask too short: {len(mask)} < {len(data)}")
    return bytes(swap_nibbles(b ^ m) for b, m in zip(data, mask))


def obfuscate(data: bytes, mask: bytes) -> bytes:
    """Inverse of ``deobfuscate``: nibble-swap first, then XOR."""
    if len(mask) < len(data):
        raise ValueError(f"Mask too short: {len(mask)} < {len(data)}")
    return bytes(swap_nibbles(b) ^ m for b, m in zip(data, mask))


def key_shuffle(key: bytes, hkey: bytes) -> bytes:
    """
    Shuffle a 16-byte key against ``hkey`` for the legacy fallback derivation.

    Works word by word over the key but is byte-for-byte the same
    transform as ``deobfuscate``.
    """
    out = bytearray(key)
    for i in range(0, 0x10, 4):
        for j in range(i, i + 4):
            out[j] = swap_nibbles(hkey[j] ^ out[j])
    return bytes(out)


def md5_key(data: bytes) -> bytes:
    """
    Hash ``data`` and keep the first 16 hex characters of the digest.

    The result is the ASCII encoding of a hex string, used directly as AES
    key or IV material (not the raw digest bytes).
    """
    return hashlib.md5(data).hexdigest()[:KEY_HEX_CHARS].encode("ascii")


def _pad_block(data: bytes) -> bytes:
    rem = len(data) % AES_BLOCK_SIZE
    if rem:
        data = data + b"\x00" * (AES_BLOCK_SIZE - rem)
    return data


def aes_cfb_decrypt(data: bytes, key: bytes, iv: bytes) -> bytes:
    """
    AES-CFB (128-bit feedback) decrypt without padding.

    Input is zero-padded to the block size and the output truncated back
    to the input length.
    """
    if not data:
        return b""
    cipher = AES.new(key, AES.MODE_CFB, iv=iv, segment_size=128)
    return cipher.decrypt(_pad_block(data))[: len(data)]


def aes_cfb_encrypt(data: bytes, key: bytes, iv: bytes) -> bytes:
    """AES-CFB (128-bit feedback) encrypt, same framing as ``aes_cfb_decrypt``."""
    if not data:
        return b""
    cipher = AES.new(key, AES.MODE_CFB, iv=iv, segment_size=128)
    return cipher.encrypt(_pad_block(data))[: len(data)]
