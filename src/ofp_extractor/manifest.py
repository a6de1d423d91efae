"""
Manifest interpretation.

The decrypted manifest is a two-level tree: sections under the root, file
items under each section, and occasionally sub-items under an item. Any
element carrying a ``Path`` or ``filename`` attribute describes one file in
the container:

    <Sahara>
      <File Path="prog_firehose.elf" FileOffsetInSrc="12" SizeInByteInSrc="655360"/>
    </Sahara>

``FileOffsetInSrc`` counts pages; older manifests give only
``SizeInSectorInSrc``, which then serves as both offset and length (in
pages). The enclosing section name decides whether an entry is copied or
decrypted.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from typing import FrozenSet, Iterator, List, Optional, Tuple, Union

from .errors import ManifestMalformedError

logger = logging.getLogger(__name__)


PATH_ATTRIBUTES = ("Path", "filename")
OFFSET_ATTRIBUTE = "FileOffsetInSrc"
SECTOR_ATTRIBUTE = "SizeInSectorInSrc"
LENGTH_ATTRIBUTE = "SizeInByteInSrc"


class EntryAction(Enum):
    """How an entry's bytes are turned into the output file."""
    COPY = "copy"                       # verbatim byte range
    DECRYPT_PREFIX = "decrypt-prefix"   # bounded decrypted prefix, raw remainder
    DECRYPT_FULL = "decrypt-full"       # whole entry decrypted


@dataclass(frozen=True)
class FileOffset:
    """Offset given by ``FileOffsetInSrc`` (pages)."""
    pages: int

    def resolve(self, page_size: int) -> int:
        return self.pages * page_size


@dataclass(frozen=True)
class SectorOffset:
    """Offset derived from ``SizeInSectorInSrc`` (pages)."""
    sectors: int

    def resolve(self, page_size: int) -> int:
        return self.sectors * page_size


OffsetSource = Union[FileOffset, SectorOffset]


@dataclass(frozen=True)
class SectionPolicy:
    """
    Maps section names to entry actions.

    Attributes:
        copy_sections: Exact section names copied verbatim
        copy_markers: Substrings that also mark a section as verbatim
        full_decrypt_sections: Sections decrypted over their whole length
        decrypt_unlisted: Whether other sections get a bounded decrypt
            (True) or are skipped (False)
        file_sections: Sections whose entries are only direct <File> children
        default_offset: Offset used when an entry carries no offset attribute
            (None skips the entry)
    """
    copy_sections: FrozenSet[str] = frozenset()
    copy_markers: Tuple[str, ...] = ()
    full_decrypt_sections: FrozenSet[str] = frozenset()
    decrypt_unlisted: bool = True
    file_sections: FrozenSet[str] = frozenset()
    default_offset: Optional[OffsetSource] = None

    def classify(self, section: str) -> Optional[EntryAction]:
        if section in self.copy_sections or any(m in section for m in self.copy_markers):
            return EntryAction.COPY
        if section in self.full_decrypt_sections:
            return EntryAction.DECRYPT_FULL
        if self.decrypt_unlisted:
            return EntryAction.DECRYPT_PREFIX
        return None


OFP_POLICY = SectionPolicy(
    copy_sections=frozenset({"DigestsToSign", "ChainedTableOfDigests", "Firmware"}),
    full_decrypt_sections=frozenset({"Sahara"}),
)

OPS_POLICY = SectionPolicy(
    copy_sections=frozenset({"UFS_PROVISION"}),
    copy_markers=("Program",),
    full_decrypt_sections=frozenset({"SAHARA"}),
    decrypt_unlisted=False,
    file_sections=frozenset({"SAHARA", "UFS_PROVISION"}),
    default_offset=FileOffset(0),
)


@dataclass(frozen=True)
class ManifestEntry:
    """One file described by the manifest, resolved to absolute bytes."""
    path: str
    section: str
    offset: int
    length: int
    action: EntryAction
    offset_source: OffsetSource


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _int_attr(item: ET.Element, name: str) -> Optional[int]:
    raw = item.get(name)
    if raw is None:
        return None
    try:
        return int(raw.strip())
    except ValueError:
        raise ManifestMalformedError(
            f"Invalid {name}={raw!r} on <{_local_name(item.tag)}>"
        )


def entry_path(item: ET.Element) -> Optional[str]:
    """Return the item's output path, or None if it is not a file entry."""
    for attr in PATH_ATTRIBUTES:
        value = item.get(attr)
        if value:
            return value
    return None


def safe_relative_path(name: str) -> str:
    """
    Normalize a manifest path for use below the output directory.

    Backslashes are treated as separators; absolute paths and ``..``
    components are rejected.
    """
    pure = PurePosixPath(name.replace("\\", "/"))
    if pure.is_absolute() or ".." in pure.parts or not pure.parts:
        raise ManifestMalformedError(f"Unsafe entry path: {name!r}")
    return str(pure)


def offset_source(item: ET.Element) -> Optional[OffsetSource]:
    pages = _int_attr(item, OFFSET_ATTRIBUTE)
    if pages is not None:
        return FileOffset(pages)
    sectors = _int_attr(item, SECTOR_ATTRIBUTE)
    if sectors is not None:
        return SectorOffset(sectors)
    return None


def parse_entry(
    item: ET.Element,
    section: str,
    page_size: int,
    action: EntryAction,
    default_offset: Optional[OffsetSource] = None,
) -> Optional[ManifestEntry]:
    """Build a ManifestEntry, or None for elements that are not file entries."""
    name = entry_path(item)
    if not name:
        return None

    source = offset_source(item) or default_offset
    if source is None:
        logger.debug("Skipping %s: no offset attribute", name)
        return None

    length = _int_attr(item, LENGTH_ATTRIBUTE)
    if length is None:
        sectors = _int_attr(item, SECTOR_ATTRIBUTE) or 0
        length = sectors * page_size

    offset = source.resolve(page_size)
    if offset < 0 or length < 0:
        raise ManifestMalformedError(f"Negative offset/length for {name}")

    return ManifestEntry(
        path=safe_relative_path(name),
        section=section,
        offset=offset,
        length=length,
        action=action,
        offset_source=source,
    )


def iter_manifest_items(
    root: ET.Element,
    file_sections: FrozenSet[str] = frozenset(),
) -> Iterator[Tuple[str, ET.Element]]:
    """
    Yield (section name, element) for items and their direct sub-items.

    Sections listed in ``file_sections`` only contribute their direct
    <File> children.
    """
    for section in root:
        name = _local_name(section.tag)
        if name in file_sections:
            for item in section:
                if _local_name(item.tag) == "File":
                    yield name, item
            continue
        for item in section:
            yield name, item
            for subitem in item:
                yield name, subitem


def parse_xml(xml: str) -> ET.Element:
    try:
        return ET.fromstring(xml.lstrip("\ufeff \t\r\n"))
    except ET.ParseError as e:
        raise ManifestMalformedError(f"Manifest is not valid XML: {e}") from e


def parse_manifest(xml: str, page_size: int, policy: SectionPolicy = OFP_POLICY) -> List[ManifestEntry]:
    """
    Interpret a decrypted manifest into entries, in document order.

    Args:
        xml: Manifest text
        page_size: Container page size used to scale page counts
        policy: Section classification for this container kind

    Returns:
        List of ManifestEntry

    Raises:
        ManifestMalformedError: On XML errors, bad integers or unsafe paths
    """
    root = parse_xml(xml)
    entries: List[ManifestEntry] = []
    for section, item in iter_manifest_items(root, policy.file_sections):
        action = policy.classify(section)
        if action is None:
            continue
        entry = parse_entry(item, section, page_size, action, policy.default_offset)
        if entry is not None:
            entries.append(entry)
    logger.debug("Manifest lists %d entries", len(entries))
    return entries
