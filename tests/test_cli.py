"""Tests for CLI parsing helpers and commands."""

import pytest
import typer
from typer.testing import CliRunner

from ofp_extractor.cli import app, parse_format, parse_int
from ofp_extractor.container import ContainerKind


runner = CliRunner()


class TestParseHelpers:
    def test_parse_format(self):
        assert parse_format("auto") is None
        assert parse_format("OPS") == ContainerKind.OPS

    def test_parse_format_invalid(self):
        with pytest.raises(typer.BadParameter):
            parse_format("rar")

    def test_parse_int(self):
        assert parse_int("0x40000", "chunk size") == 0x40000
        assert parse_int("512", "chunk size") == 512
        assert parse_int(None, "chunk size") is None

    def test_parse_int_invalid(self):
        with pytest.raises(typer.BadParameter):
            parse_int("zz", "chunk size")


class TestCommands:
    def test_keysets(self):
        result = runner.invoke(app, ["keysets"])
        assert result.exit_code == 0
        assert "OFP Key Sets" in result.output
        assert "OPS Mbox Variants" in result.output

    def test_extract(self, sample_ofp, tmp_path):
        out = tmp_path / "cli_out"
        result = runner.invoke(app, ["extract", str(sample_ofp.path), "-o", str(out)])
        assert result.exit_code == 0
        assert (out / "boot.img").read_bytes() == sample_ofp.plain["boot.img"]
        assert (out / "ProFile.xml").exists()

    def test_extract_chunk_size(self, sample_ofp, tmp_path):
        out = tmp_path / "cli_out"
        result = runner.invoke(app, ["extract", str(sample_ofp.path), "-o", str(out), "--chunk-size", "0x40"])
        assert result.exit_code == 0
        boot = (out / "boot.img").read_bytes()
        assert boot[64:] == sample_ofp.stored["boot.img"][64:]

    def test_extract_zero_chunk_size_rejected(self, sample_ofp, tmp_path):
        out = tmp_path / "cli_out"
        result = runner.invoke(app, ["extract", str(sample_ofp.path), "-o", str(out), "--chunk-size", "0"])
        assert result.exit_code == 2
        assert not out.exists()

    def test_extract_json(self, sample_ops, tmp_path):
        result = runner.invoke(app, ["extract", str(sample_ops.path), "-o", str(tmp_path / "o"), "--json"])
        assert result.exit_code == 0
        assert '"ok": true' in result.output
        assert '"key": "mbox6"' in result.output
        assert '"entry_count": 3' in result.output

    def test_extract_missing_file(self, tmp_path):
        result = runner.invoke(app, ["extract", str(tmp_path / "missing.ofp")])
        assert result.exit_code == 1

    def test_extract_bad_format(self, sample_ofp):
        result = runner.invoke(app, ["extract", str(sample_ofp.path), "--format", "rar"])
        assert result.exit_code == 2

    def test_info_json(self, sample_ofp):
        result = runner.invoke(app, ["info", str(sample_ofp.path), "--json"])
        assert result.exit_code == 0
        assert '"page_size": 512' in result.output
        assert not (sample_ofp.path.parent / "extract").exists()

    def test_manifest_to_file(self, sample_ofp, tmp_path):
        dest = tmp_path / "manifest.xml"
        result = runner.invoke(app, ["manifest", str(sample_ofp.path), "-o", str(dest)])
        assert result.exit_code == 0
        assert dest.read_bytes() == sample_ofp.xml
