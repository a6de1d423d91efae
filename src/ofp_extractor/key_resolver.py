"""
Key resolution for OFP and OPS manifests.

There is no key identifier in either container. Every candidate is tried
in declared order against the encrypted manifest and the first one whose
plaintext looks like XML wins; no scoring, no reordering.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Optional, Sequence

from .errors import KeyNotFoundError
from .models.keysets import FALLBACK_KEYSET, KEYSETS, DerivedKey, FallbackKeySet, KeySetCandidate
from .utils.crypto import aes_cfb_decrypt
from .utils.ops_cipher import MBOXES, Mbox, custom_decrypt, try_decrypt_trailer

logger = logging.getLogger(__name__)


XML_MARKER = b"<?xml"

EntryDecryptor = Callable[[bytes], bytes]


@dataclass(frozen=True)
class KeyAttempt:
    """A derived key ready to be tried, tagged with its table label."""
    label: str
    key: DerivedKey


@dataclass(frozen=True)
class ResolvedKey:
    """Winning OFP key and the manifest it decrypted."""
    label: str
    key: bytes
    iv: bytes
    xml: str

    def decryptor(self) -> EntryDecryptor:
        return functools.partial(aes_cfb_decrypt, key=self.key, iv=self.iv)


@dataclass(frozen=True)
class ResolvedMbox:
    """Winning OPS mbox and the manifest it decrypted."""
    mbox: Mbox
    xml: str

    @property
    def label(self) -> str:
        return self.mbox.name

    def decryptor(self) -> EntryDecryptor:
        return functools.partial(custom_decrypt, mbox=self.mbox)


def iter_key_attempts(
    keysets: Optional[Iterable[KeySetCandidate]] = None,
    fallback: Optional[FallbackKeySet] = FALLBACK_KEYSET,
) -> Iterator[KeyAttempt]:
    """
    Lazily derive keys in resolution order.

    Table rows come first, then the fallback derivation (if any). Keys are
    only derived when the consumer asks for the next attempt.
    """
    for keyset in (KEYSETS if keysets is None else keysets):
        yield KeyAttempt(label=keyset.version, key=keyset.derive())
    if fallback is not None:
        yield KeyAttempt(label=fallback.version, key=fallback.derive())


def try_manifest_key(ciphertext: bytes, key: DerivedKey) -> Optional[str]:
    """
    Decrypt the manifest with one key.

    Returns the text cut at the last ``>`` when the plaintext contains
    ``<?xml``, otherwise ``None``.
    """
    plain = aes_cfb_decrypt(ciphertext, key.key, key.iv)
    if XML_MARKER not in plain:
        logger.debug("  Decrypted preview: %r", plain[:30])
        return None
    last_gt = plain.rfind(b">")
    if last_gt > 0:
        plain = plain[: last_gt + 1]
    return plain.decode("utf-8", errors="replace")


def resolve_ofp_key(
    ciphertext: bytes,
    keysets: Optional[Sequence[KeySetCandidate]] = None,
    fallback: Optional[FallbackKeySet] = FALLBACK_KEYSET,
) -> ResolvedKey:
    """Find the first key whose manifest plaintext looks like XML."""
    for attempt in iter_key_attempts(keysets, fallback):
        logger.info(
            "Trying %s: key=%s, iv=%s",
            attempt.label,
            attempt.key.key.decode("ascii"),
            attempt.key.iv.decode("ascii"),
        )
        xml = try_manifest_key(ciphertext, attempt.key)
        if xml is not None:
            logger.info("Found key: %s", attempt.label)
            return ResolvedKey(label=attempt.label, key=attempt.key.key, iv=attempt.key.iv, xml=xml)

    raise KeyNotFoundError("No matching key found for this OFP file")


def resolve_ops_mbox(
    ciphertext: bytes,
    xml_length: int,
    mboxes: Sequence[Mbox] = MBOXES,
) -> ResolvedMbox:
    """Try each mbox variant in order; the first XML-looking plaintext wins."""
    for mbox in mboxes:
        logger.info("Trying %s", mbox.name)
        xml = try_decrypt_trailer(mbox, ciphertext, xml_length)
        if xml is not None:
            logger.info("Found valid key: %s", mbox.name)
            return ResolvedMbox(mbox=mbox, xml=xml)

    raise KeyNotFoundError("Unsupported key: no mbox variant decrypts this OPS file")
