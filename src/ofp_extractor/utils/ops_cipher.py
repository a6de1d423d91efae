"""
OPS container cipher.

A self-synchronising stream construction built from an AES-like round
function. For every 16-byte block the rolling register is run through
``key_update`` (parameterised by one of the "mbox" tables) to produce four
key-stream words; the output is key-stream XOR input and the *ciphertext*
block becomes the next register value.

Inputs shorter than one block at the end of a buffer use a second key
schedule taken from the substitution table itself and are processed one
32-bit word at a time.

Layout notes:
- Substitution table: 256 entries x 8 bytes, entry ``n`` is
  ``2s, s, s, 3s, 2s, s, s, 3s`` for ``s = SBOX[n]`` (GF(2^8) products).
- Lookups read a little-endian uint32 at ``n * 8 + k`` for k in 0..3.
- mbox: 62 bytes, first 15 little-endian words plus word 15 = byte 60
  (round count, 10 in every known table). Words beyond 15 read as 0.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


DEFAULT_ROUNDS = 10
BLOCK_SIZE = 0x10
INITIAL_REGISTER: Tuple[int, int, int, int] = (0x9EE3B5D1, 0x9D04EA5E, 0xABD51D67, 0xAFCBAFD2)

SBOX = bytes.fromhex(
    "637c777bf26b6fc53001672bfed7ab76"
    "ca82c97dfa5947f0add4a2af9ca472c0"
    "b7fd9326363ff7cc34a5e5f171d83115"
    "04c723c31896059a071280e2eb27b275"
    "09832c1a1b6e5aa0523bd6b329e32f84"
    "53d100ed20fcb15b6acbbe394a4c58cf"
    "d0efaafb434d338545f9027f503c9fa8"
    "51a3408f929d38f5bcb6da2110fff3d2"
    "cd0c13ec5f974417c4a77e3d645d1973"
    "60814fdc222a908846eeb814de5e0bdb"
    "e0323a0a4906245cc2d3ac629195e479"
    "e7c8376d8dd54ea96c56f4ea657aae08"
    "ba78252e1ca6b4c6e8dd741f4bbd8b8a"
    "703eb5664803f60e613557b986c11d9e"
    "e1f8981169d98e949b1e87e9ce5528df"
    "8ca1890dbfe6426841992d0fb054bb16"
)


def _xtime(value: int) -> int:
    value <<= 1
    if value & 0x100:
        value ^= 0x11B
    return value


def _build_sub_table(sbox: Iterable[int]) -> bytes:
    out = bytearray()
    for s in sbox:
        entry = bytes((_xtime(s), s, s, _xtime(s) ^ s))
        out += entry * 2
    return bytes(out)


SUB_TABLE = _build_sub_table(SBOX)

# Pre-split lookup columns: _T[k][n] == uint32le(SUB_TABLE[n * 8 + k:n * 8 + k + 4])
_T: Tuple[Tuple[int, ...], ...] = tuple(
    tuple(struct.unpack_from("<I", SUB_TABLE, n * 8 + k)[0] for n in range(256))
    for k in range(4)
)


@dataclass(frozen=True)
class Mbox:
    """Named key-schedule constant table (sixteen 32-bit words)."""

    name: str
    words: Tuple[int, ...]

    @property
    def rounds(self) -> int:
        return self.words[15] if len(self.words) > 15 else DEFAULT_ROUNDS


def mbox_from_bytes(name: str, raw: bytes) -> Mbox:
    """Interpret a 62/64-byte mbox blob as 15 words plus the round-count byte."""
    if len(raw) < 61:
        raise ValueError(f"mbox {name} too short: {len(raw)} bytes")
    words = struct.unpack_from("<15I", raw) + (raw[60],)
    return Mbox(name=name, words=words)


def _mbox(name: str, head: str) -> Mbox:
    return mbox_from_bytes(name, bytes.fromhex(head) + b"\x00" * 44 + b"\x0a\x00")


MBOX5 = _mbox("mbox5", "608a3f2d686bd423510cd095bb40e976")
MBOX6 = _mbox("mbox6", "aa69829e5ddeb13d30bb81a34665a3e1")
MBOX4 = _mbox("mbox4", "c45d057199ddbbee29a16dc7adbfa43f")

# Resolution order matters: first variant producing XML wins.
MBOXES: Tuple[Mbox, ...] = (MBOX5, MBOX6, MBOX4)

# Key schedule for the sub-block tail: table bytes reinterpreted as words.
TAIL_SCHEDULE = Mbox(
    name="sbox",
    words=struct.unpack_from("<15I", SUB_TABLE) + (DEFAULT_ROUNDS,),
)


def key_update(register: Sequence[int], mbox: Mbox) -> Tuple[int, int, int, int]:
    """Produce the next four key-stream words from ``register``."""
    rounds = mbox.rounds
    need = 4 * rounds + 4
    words = tuple(mbox.words) + (0,) * max(0, need - len(mbox.words))
    t0, t1, t2, t3 = _T

    d = register[0] ^ words[0]
    a = register[1] ^ words[1]
    b = register[2] ^ words[2]
    c = register[3] ^ words[3]

    e = t2[(b >> 16) & 0xFF] ^ t3[(a >> 8) & 0xFF] ^ t1[c >> 24] ^ t0[d & 0xFF] ^ words[4]
    h = t2[(c >> 16) & 0xFF] ^ t3[(b >> 8) & 0xFF] ^ t1[d >> 24] ^ t0[a & 0xFF] ^ words[5]
    i = t2[(d >> 16) & 0xFF] ^ t3[(c >> 8) & 0xFF] ^ t1[a >> 24] ^ t0[b & 0xFF] ^ words[6]
    a = t3[(d >> 8) & 0xFF] ^ t2[(a >> 16) & 0xFF] ^ t1[b >> 24] ^ t0[c & 0xFF] ^ words[7]

    g = 8
    for _ in range(rounds - 2):
        e, h, i, a = (
            t2[(i >> 16) & 0xFF] ^ t3[(h >> 8) & 0xFF] ^ t1[a >> 24] ^ t0[e & 0xFF] ^ words[g],
            t2[(a >> 16) & 0xFF] ^ t3[(i >> 8) & 0xFF] ^ t1[e >> 24] ^ t0[h & 0xFF] ^ words[g + 1],
            t2[(e >> 16) & 0xFF] ^ t3[(a >> 8) & 0xFF] ^ t1[h >> 24] ^ t0[i & 0xFF] ^ words[g + 2],
            t3[(e >> 8) & 0xFF] ^ t2[(h >> 16) & 0xFF] ^ t1[i >> 24] ^ t0[a & 0xFF] ^ words[g + 3],
        )
        g += 4

    return (
        (t0[(i >> 16) & 0xFF] & 0xFF0000)
        ^ (t1[(h >> 8) & 0xFF] & 0xFF00)
        ^ (t3[a >> 24] & 0xFF000000)
        ^ (t2[e & 0xFF] & 0xFF)
        ^ words[g],
        (t0[(a >> 16) & 0xFF] & 0xFF0000)
        ^ (t1[(i >> 8) & 0xFF] & 0xFF00)
        ^ (t3[e >> 24] & 0xFF000000)
        ^ (t2[h & 0xFF] & 0xFF)
        ^ words[g + 3],
        (t0[(e >> 16) & 0xFF] & 0xFF0000)
        ^ (t1[(a >> 8) & 0xFF] & 0xFF00)
        ^ (t3[h >> 24] & 0xFF000000)
        ^ (t2[i & 0xFF] & 0xFF)
        ^ words[g + 2],
        (t0[(h >> 16) & 0xFF] & 0xFF0000)
        ^ (t1[(e >> 8) & 0xFF] & 0xFF00)
        ^ (t3[i >> 24] & 0xFF000000)
        ^ (t2[a & 0xFF] & 0xFF)
        ^ words[g + 1],
    )


def _crypt(data: bytes, mbox: Mbox, encrypt: bool, register: Sequence[int]) -> bytes:
    rkey: List[int] = list(register)
    out = bytearray()
    full = len(data) - len(data) % BLOCK_SIZE

    for ptr in range(0, full, BLOCK_SIZE):
        rkey = list(key_update(rkey, mbox))
        block = struct.unpack_from("<4I", data, ptr)
        result = [k ^ w for k, w in zip(rkey, block)]
        out += struct.pack("<4I", *result)
        rkey = result if encrypt else list(block)

    if full < len(data):
        rkey = list(key_update(rkey, TAIL_SCHEDULE))
        tail = bytes(data[full:])
        tail += b"\x00" * (-len(tail) % 4)
        for m, (word,) in enumerate(struct.iter_unpack("<I", tail)):
            result = word ^ rkey[m]
            out += struct.pack("<I", result)
            rkey[m] = result if encrypt else word

    return bytes(out[: len(data)])


def custom_decrypt(data: bytes, mbox: Mbox, register: Sequence[int] = INITIAL_REGISTER) -> bytes:
    """Decrypt an OPS region starting from a fresh register."""
    return _crypt(data, mbox, False, register)


def custom_encrypt(data: bytes, mbox: Mbox, register: Sequence[int] = INITIAL_REGISTER) -> bytes:
    """Inverse of ``custom_decrypt`` (ciphertext feedback on the output side)."""
    return _crypt(data, mbox, True, register)


def looks_like_xml(text: str) -> bool:
    return "<?xml" in text or "xml " in text


def try_decrypt_trailer(mbox: Mbox, data: bytes, xml_length: int) -> Optional[str]:
    """
    Decrypt a manifest candidate with one mbox.

    Returns the decoded text (first ``xml_length`` bytes) when it looks like
    XML, otherwise ``None``. Holds no state between calls.
    """
    plain = custom_decrypt(data, mbox)[:xml_length]
    text = plain.decode("utf-8", errors="replace")
    if looks_like_xml(text):
        return text
    logger.debug("%s: no XML marker in %r", mbox.name, text[:30])
    return None
