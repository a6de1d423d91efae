"""Tests for manifest interpretation."""

import pytest

from ofp_extractor.errors import ManifestMalformedError
from ofp_extractor.manifest import (
    OFP_POLICY,
    OPS_POLICY,
    EntryAction,
    FileOffset,
    SectorOffset,
    parse_manifest,
    safe_relative_path,
)


def _xml(body):
    return f'<?xml version="1.0" encoding="utf-8"?>\n<profile>{body}</profile>'


class TestOffsets:
    def test_file_offset_in_pages(self):
        entries = parse_manifest(
            _xml('<Program0><Program filename="boot.img" FileOffsetInSrc="3" SizeInByteInSrc="100"/></Program0>'),
            0x1000,
        )
        assert len(entries) == 1
        entry = entries[0]
        assert entry.offset == 0x3000
        assert entry.length == 100
        assert entry.offset_source == FileOffset(3)

    def test_sector_count_gives_offset_and_length(self):
        entries = parse_manifest(
            _xml('<Program0><Program filename="old.img" SizeInSectorInSrc="4"/></Program0>'),
            0x200,
        )
        assert entries[0].offset == 0x800
        assert entries[0].length == 0x800
        assert isinstance(entries[0].offset_source, SectorOffset)

    def test_byte_length_preferred_over_sectors(self):
        entries = parse_manifest(
            _xml('<Program0><Program filename="x.img" SizeInSectorInSrc="2" SizeInByteInSrc="10"/></Program0>'),
            0x200,
        )
        assert entries[0].offset == 0x400
        assert entries[0].length == 10

    def test_entry_without_offset_skipped(self):
        entries = parse_manifest(_xml('<Program0><Program filename="x.img"/></Program0>'), 0x200)
        assert entries == []

    def test_element_without_path_skipped(self):
        entries = parse_manifest(_xml('<BasicInfo><Info FileOffsetInSrc="1"/></BasicInfo>'), 0x200)
        assert entries == []

    def test_path_preferred_over_filename(self):
        entries = parse_manifest(
            _xml('<Program0><Program Path="a.bin" filename="b.bin" FileOffsetInSrc="0" SizeInByteInSrc="1"/></Program0>'),
            0x200,
        )
        assert entries[0].path == "a.bin"


class TestOfpPolicy:
    XML = _xml(
        '<Sahara><File Path="prog.elf" FileOffsetInSrc="1" SizeInByteInSrc="10"/></Sahara>'
        '<Firmware><File Path="fw.bin" FileOffsetInSrc="2" SizeInByteInSrc="10"/></Firmware>'
        '<DigestsToSign><File Path="d.bin" FileOffsetInSrc="3" SizeInByteInSrc="10"/></DigestsToSign>'
        '<ChainedTableOfDigests><File Path="c.bin" FileOffsetInSrc="4" SizeInByteInSrc="10"/></ChainedTableOfDigests>'
        '<Program0><Program filename="boot.img" FileOffsetInSrc="5" SizeInByteInSrc="10"/></Program0>'
    )

    def test_actions_by_section(self):
        actions = {e.path: e.action for e in parse_manifest(self.XML, 0x200, OFP_POLICY)}
        assert actions == {
            "prog.elf": EntryAction.DECRYPT_FULL,
            "fw.bin": EntryAction.COPY,
            "d.bin": EntryAction.COPY,
            "c.bin": EntryAction.COPY,
            "boot.img": EntryAction.DECRYPT_PREFIX,
        }

    def test_document_order(self):
        paths = [e.path for e in parse_manifest(self.XML, 0x200)]
        assert paths == ["prog.elf", "fw.bin", "d.bin", "c.bin", "boot.img"]


class TestOpsPolicy:
    XML = _xml(
        '<SAHARA><File Path="xbl.elf" FileOffsetInSrc="1" SizeInByteInSrc="10"/></SAHARA>'
        '<UFS_PROVISION><File Path="prov.xml" FileOffsetInSrc="2" SizeInByteInSrc="10"/></UFS_PROVISION>'
        '<Program1><program label="sys"><sub filename="system.img" FileOffsetInSrc="3" SizeInByteInSrc="10"/></program></Program1>'
        '<Other><File Path="skip.bin" FileOffsetInSrc="4" SizeInByteInSrc="10"/></Other>'
    )

    def test_actions_and_skips(self):
        entries = parse_manifest(self.XML, 0x200, OPS_POLICY)
        actions = {e.path: e.action for e in entries}
        assert actions == {
            "xbl.elf": EntryAction.DECRYPT_FULL,
            "prov.xml": EntryAction.COPY,
            "system.img": EntryAction.COPY,
        }

    def test_subitem_section_name(self):
        entries = parse_manifest(self.XML, 0x200, OPS_POLICY)
        sub = [e for e in entries if e.path == "system.img"][0]
        assert sub.section == "Program1"
        assert sub.offset == 0x600

    def test_missing_offset_defaults_to_start(self):
        xml = _xml('<SAHARA><File Path="xbl.elf" SizeInByteInSrc="10"/></SAHARA>')
        [entry] = parse_manifest(xml, 0x200, OPS_POLICY)
        assert entry.path == "xbl.elf"
        assert entry.offset == 0
        assert entry.offset_source == FileOffset(0)
        assert entry.action == EntryAction.DECRYPT_FULL

    def test_only_file_children_in_sahara_sections(self):
        xml = _xml(
            '<SAHARA><Image Path="x.bin" FileOffsetInSrc="1" SizeInByteInSrc="10"/>'
            '<File Path="xbl.elf" FileOffsetInSrc="2" SizeInByteInSrc="10">'
            '<File Path="nested.bin" FileOffsetInSrc="3" SizeInByteInSrc="10"/></File></SAHARA>'
            '<UFS_PROVISION><Item Path="y.xml" FileOffsetInSrc="4"/></UFS_PROVISION>'
        )
        assert [e.path for e in parse_manifest(xml, 0x200, OPS_POLICY)] == ["xbl.elf"]

    def test_ofp_still_requires_offset(self):
        xml = _xml('<Sahara><File Path="xbl.elf" SizeInByteInSrc="10"/></Sahara>')
        assert parse_manifest(xml, 0x200) == []


class TestMalformed:
    def test_invalid_xml(self):
        with pytest.raises(ManifestMalformedError):
            parse_manifest("<?xml version='1.0'?><profile><broken></profile>", 0x200)

    def test_non_integer_offset(self):
        with pytest.raises(ManifestMalformedError):
            parse_manifest(
                _xml('<Program0><Program filename="x" FileOffsetInSrc="abc" SizeInByteInSrc="1"/></Program0>'),
                0x200,
            )

    def test_negative_length(self):
        with pytest.raises(ManifestMalformedError):
            parse_manifest(
                _xml('<Program0><Program filename="x" FileOffsetInSrc="1" SizeInByteInSrc="-5"/></Program0>'),
                0x200,
            )

    def test_leading_bom_and_whitespace_tolerated(self):
        xml = "\ufeff\n  " + _xml('<Firmware><File Path="a" FileOffsetInSrc="0" SizeInByteInSrc="1"/></Firmware>')
        assert len(parse_manifest(xml, 0x200)) == 1


class TestSafeRelativePath:
    def test_backslashes_become_separators(self):
        assert safe_relative_path("IMAGES\\boot.img") == "IMAGES/boot.img"

    def test_plain_relative(self):
        assert safe_relative_path("./fw/abl.bin") == "fw/abl.bin"

    @pytest.mark.parametrize("name", ["/etc/passwd", "../escape.bin", "a/../../b", "\\\\..\\x"])
    def test_unsafe_rejected(self, name):
        with pytest.raises(ManifestMalformedError):
            safe_relative_path(name)

    def test_unsafe_path_in_manifest(self):
        with pytest.raises(ManifestMalformedError):
            parse_manifest(
                _xml('<Firmware><File Path="../../x" FileOffsetInSrc="0" SizeInByteInSrc="1"/></Firmware>'),
                0x200,
            )
