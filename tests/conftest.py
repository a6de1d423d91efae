"""Shared fixtures: synthetic OFP/OPS containers built in tmp_path."""

import struct
from pathlib import Path
from types import SimpleNamespace

import pytest

from ofp_extractor.container import OFP_MAGIC, OPS_TRAILER_SIZE
from ofp_extractor.models import KEYSETS, DerivedKey
from ofp_extractor.utils.crypto import aes_cfb_encrypt
from ofp_extractor.utils.ops_cipher import MBOX6, Mbox, custom_encrypt


def _pad(data: bytes, size: int) -> bytes:
    return data + b"\x00" * (-len(data) % size)


def layout_pages(blobs, page_size):
    """Concatenate blobs, each starting on a page boundary. Returns (body, page indices)."""
    body = bytearray()
    pages = []
    for blob in blobs:
        pages.append(len(body) // page_size)
        body += _pad(blob, page_size)
    return bytes(body), pages


def write_ofp(
    path: Path,
    xml: bytes,
    key: DerivedKey,
    body: bytes = b"",
    page_size: int = 0x200,
    magic_offset: int = 0x10,
    length_field=None,
) -> Path:
    """
    Write an OFP container: body | encrypted manifest | trailer page.

    The manifest starts on the page following the (page-padded) body.
    """
    body = _pad(body, page_size)
    manifest_ct = aes_cfb_encrypt(xml, key.key, key.iv)
    trailer = bytearray(page_size)
    struct.pack_into(
        "<II",
        trailer,
        0x14,
        len(body) // page_size,
        len(manifest_ct) if length_field is None else length_field,
    )
    struct.pack_into("<I", trailer, magic_offset, OFP_MAGIC)
    path.write_bytes(body + _pad(manifest_ct, page_size) + bytes(trailer))
    return path


def write_ops(path: Path, xml: bytes, mbox: Mbox = MBOX6, body: bytes = b"") -> Path:
    """Write an OPS container: body | encrypted padded manifest | 0x200 trailer."""
    body = _pad(body, OPS_TRAILER_SIZE)
    manifest_ct = custom_encrypt(_pad(xml, OPS_TRAILER_SIZE), mbox)
    trailer = bytearray(OPS_TRAILER_SIZE)
    struct.pack_into("<i", trailer, 0x18, len(xml))
    path.write_bytes(body + manifest_ct + bytes(trailer))
    return path


@pytest.fixture
def keyset_key():
    """Derived key of table row 2 (V1.5.13)."""
    return KEYSETS[2].derive()


@pytest.fixture
def sample_ofp(tmp_path, keyset_key):
    """OFP container with one entry per action kind, page size 0x200."""
    key = keyset_key
    prog = bytes((i * 7) & 0xFF for i in range(100))
    fw = b"\xA5" * 64
    boot = bytes((i * 13 + 1) & 0xFF for i in range(300))

    stored = {
        "prog.elf": aes_cfb_encrypt(prog, key.key, key.iv),
        "fw/abl.bin": fw,
        "boot.img": aes_cfb_encrypt(boot, key.key, key.iv),
    }
    body, pages = layout_pages(list(stored.values()), 0x200)
    xml = (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        "<profile>\n"
        f'  <Sahara><File Path="prog.elf" FileOffsetInSrc="{pages[0]}" SizeInByteInSrc="{len(prog)}"/></Sahara>\n'
        f'  <Firmware><File Path="fw/abl.bin" FileOffsetInSrc="{pages[1]}" SizeInByteInSrc="{len(fw)}"/></Firmware>\n'
        f'  <Program0><Program label="boot" filename="boot.img" FileOffsetInSrc="{pages[2]}" SizeInByteInSrc="{len(boot)}"/></Program0>\n'
        "  <BasicInfo Project=\"12345\"/>\n"
        "</profile>"
    ).encode("utf-8")

    path = write_ofp(tmp_path / "firmware.ofp", xml, key, body)
    return SimpleNamespace(
        path=path,
        key=key,
        xml=xml,
        plain={"prog.elf": prog, "fw/abl.bin": fw, "boot.img": boot},
        stored=stored,
    )


@pytest.fixture
def sample_ops(tmp_path):
    """OPS container (mbox6) with SAHARA, UFS_PROVISION and Program sections."""
    sahara = bytes((i * 5 + 3) & 0xFF for i in range(75))
    provision = b"\x11\x22\x33\x44" * 10
    system = bytes((i * 3) & 0xFF for i in range(600))
    skipped = b"\xEE" * 32

    sahara_ct = custom_encrypt(sahara, MBOX6)
    body, pages = layout_pages([sahara_ct, provision, system, skipped], OPS_TRAILER_SIZE)
    xml = (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        "<Setting>\n"
        f'  <SAHARA><File Path="xbl.elf" FileOffsetInSrc="{pages[0]}" SizeInByteInSrc="{len(sahara)}"/></SAHARA>\n'
        f'  <UFS_PROVISION><File Path="provision.xml" FileOffsetInSrc="{pages[1]}" SizeInByteInSrc="{len(provision)}"/></UFS_PROVISION>\n'
        f'  <Program0><program label="system"><sub filename="system.img" FileOffsetInSrc="{pages[2]}" SizeInByteInSrc="{len(system)}"/></program></Program0>\n'
        f'  <Other><File Path="skipped.bin" FileOffsetInSrc="{pages[3]}" SizeInByteInSrc="{len(skipped)}"/></Other>\n'
        "</Setting>"
    ).encode("utf-8")

    path = write_ops(tmp_path / "firmware.ops", xml, MBOX6, body)
    return SimpleNamespace(
        path=path,
        xml=xml,
        plain={"xbl.elf": sahara, "provision.xml": provision, "system.img": system},
    )
