"""
Container sniffing for OFP/OPS firmware packages.

OFP layout (little-endian), relative to the last page of the file:

| Offset | Size | Description |
|--------|------|-------------|
| 0x10 | 4 | Magic 0x7CEF (some tools place it at 0x14 or 0x00) |
| 0x14 | 4 | Manifest offset, in pages |
| 0x18 | 4 | Manifest length, in bytes |

The page size (0x200 or 0x1000) is not stored anywhere; it is discovered
by probing for the magic. OPS files instead end with a fixed 0x200-byte
trailer whose int32 at 0x18 holds the manifest plaintext length; the
manifest ciphertext, padded to 0x200, sits right before the trailer.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Optional, Union

from .errors import ContainerIOError, FormatNotRecognizedError

logger = logging.getLogger(__name__)


OFP_MAGIC = 0x7CEF
PAGE_SIZES = (0x200, 0x1000)
MAGIC_OFFSETS = (0x10, 0x14, 0x0)
TAIL_SCAN_SIZE = 0x2000
MANIFEST_FIELDS_OFFSET = 0x14
MIN_MANIFEST_LENGTH = 200
MANIFEST_HEADER_ALLOWANCE = 0x57

OPS_TRAILER_SIZE = 0x200
OPS_XML_LENGTH_OFFSET = 0x18
OPS_PAGE_SIZE = 0x200

ZIP_SIGNATURE = b"PK"


class ContainerKind(Enum):
    """Detected container format."""
    OFP = "ofp"     # AES-CFB, key-set table
    OPS = "ops"     # custom mbox cipher
    ZIP = "zip"     # plain archive


@dataclass(frozen=True)
class Container:
    """An identified container file."""
    path: Path
    size: int
    kind: ContainerKind


@dataclass(frozen=True)
class OfpLayout:
    """Where the encrypted OFP manifest lives."""
    page_size: int
    manifest_offset: int
    manifest_length: int


@dataclass(frozen=True)
class OpsLayout:
    """Where the encrypted OPS manifest lives."""
    manifest_offset: int
    manifest_length: int
    xml_length: int
    page_size: int = OPS_PAGE_SIZE


def parse_container_kind(value: Optional[str]) -> Optional[ContainerKind]:
    """
    Parse a user-supplied format name.

    Returns ``None`` for "auto"/empty (detect from file), raises ValueError
    for unknown names.
    """
    if value is None:
        return None
    value = value.strip().lower()
    if value in ("", "auto"):
        return None
    try:
        return ContainerKind(value)
    except ValueError:
        valid = ", ".join(k.value for k in ContainerKind)
        raise ValueError(f"Invalid format '{value}'. Use auto, {valid}.")


def detect_container(
    path: Union[str, Path],
    kind: Optional[ContainerKind] = None,
) -> Container:
    """
    Identify a container by signature and extension.

    ``PK`` prefix means ZIP, a ``.ops`` suffix means OPS, anything else is
    treated as OFP. An explicit ``kind`` skips detection.
    """
    path = Path(path)
    if not path.is_file():
        raise ContainerIOError(f"File not found: {path}")
    size = path.stat().st_size

    if kind is None:
        with path.open("rb") as fh:
            head = fh.read(2)
        if head == ZIP_SIGNATURE:
            kind = ContainerKind.ZIP
        elif path.suffix.lower() == ".ops":
            kind = ContainerKind.OPS
        else:
            kind = ContainerKind.OFP

    logger.debug("Detected %s container (%d bytes): %s", kind.value, size, path)
    return Container(path=path, size=size, kind=kind)


def estimate_page_size(distance_from_end: int) -> int:
    """Round a magic position (bytes from EOF) up to a plausible page size."""
    if distance_from_end <= 0x200:
        return 0x200
    if distance_from_end <= 0x1000:
        return 0x1000
    return ((distance_from_end // 0x200) + 1) * 0x200


def find_page_size(fh: BinaryIO, size: int) -> int:
    """
    Discover the OFP page size by locating the trailer magic.

    Probes every (page size, offset) pair first; on a miss, scans the
    last 0x2000 bytes and estimates the page size from where the magic sits.
    """
    for page in PAGE_SIZES:
        if size < page:
            continue
        for off in MAGIC_OFFSETS:
            fh.seek(size - page + off)
            raw = fh.read(4)
            if len(raw) < 4:
                continue
            magic = struct.unpack("<I", raw)[0]
            logger.debug("Checking pagesize 0x%X offset 0x%X: magic=0x%X", page, off, magic)
            if magic == OFP_MAGIC:
                logger.info("Found pagesize: 0x%X", page)
                return page

    logger.info("Scanning file tail for magic 0x%X...", OFP_MAGIC)
    scan_size = min(TAIL_SCAN_SIZE, size)
    fh.seek(size - scan_size)
    tail = fh.read(scan_size)
    idx = tail.find(struct.pack("<I", OFP_MAGIC), 0, max(scan_size - 1, 0))
    if idx < 0:
        raise FormatNotRecognizedError(f"Unknown pagesize - magic 0x{OFP_MAGIC:X} not found")

    from_end = scan_size - idx
    page = estimate_page_size(from_end)
    logger.info("Found magic at -0x%X from end, estimated pagesize: 0x%X", from_end, page)
    return page


def locate_ofp_manifest(path: Union[str, Path]) -> OfpLayout:
    """Find page size and the encrypted manifest region of an OFP file."""
    path = Path(path)
    try:
        size = path.stat().st_size
        with path.open("rb") as fh:
            page = find_page_size(fh, size)
            fields_at = size - page + MANIFEST_FIELDS_OFFSET
            fh.seek(fields_at)
            raw = fh.read(8)
    except OSError as e:
        raise ContainerIOError(f"Cannot read {path}: {e}") from e

    if len(raw) < 8:
        raise FormatNotRecognizedError(f"Truncated trailer at 0x{fields_at:X}")

    pages, length = struct.unpack("<II", raw)
    offset = pages * page
    logger.info("XML offset: 0x%X, length: %d", offset, length)

    if length < MIN_MANIFEST_LENGTH:
        length = (size - page) - offset - MANIFEST_HEADER_ALLOWANCE
        logger.info("Implausible manifest length, using gap to trailer: %d", length)

    if length <= 0 or offset + length > size:
        raise FormatNotRecognizedError(
            f"Manifest region 0x{offset:X}+{length} outside container ({size} bytes)"
        )
    return OfpLayout(page_size=page, manifest_offset=offset, manifest_length=length)


def locate_ops_manifest(path: Union[str, Path]) -> OpsLayout:
    """Read the OPS trailer and compute the padded manifest region."""
    path = Path(path)
    try:
        size = path.stat().st_size
        if size < OPS_TRAILER_SIZE:
            raise FormatNotRecognizedError(f"File too small for OPS trailer: {size} bytes")
        with path.open("rb") as fh:
            fh.seek(size - OPS_TRAILER_SIZE)
            trailer = fh.read(OPS_TRAILER_SIZE)
    except OSError as e:
        raise ContainerIOError(f"Cannot read {path}: {e}") from e

    xml_length = struct.unpack_from("<i", trailer, OPS_XML_LENGTH_OFFSET)[0]
    if xml_length <= 0:
        raise FormatNotRecognizedError(f"Invalid OPS manifest length: {xml_length}")

    padded = xml_length + (-xml_length % OPS_TRAILER_SIZE)
    offset = size - OPS_TRAILER_SIZE - padded
    if offset < 0:
        raise FormatNotRecognizedError(
            f"OPS manifest length {xml_length} exceeds container size {size}"
        )
    logger.info("XML offset: 0x%X, length: %d (padded %d)", offset, xml_length, padded)
    return OpsLayout(manifest_offset=offset, manifest_length=padded, xml_length=xml_length)


def read_region(path: Union[str, Path], offset: int, length: int) -> bytes:
    """Read exactly ``length`` bytes at ``offset``."""
    try:
        with Path(path).open("rb") as fh:
            fh.seek(offset)
            data = fh.read(length)
    except OSError as e:
        raise ContainerIOError(f"Cannot read {path}: {e}") from e
    if len(data) != length:
        raise ContainerIOError(
            f"Short read at 0x{offset:X}: wanted {length} bytes, got {len(data)}"
        )
    return data
