"""
Core workflow actions for OFP Extractor.

This module exposes functions the CLI (and any embedding tool) can call
without dealing with exceptions: every action returns an OperationResult
with captured log lines.
"""

import hashlib
import logging
import zipfile
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, Dict, Any, Callable, List

from .results import OperationResult
from ..config import ExtractOptions, DEFAULT_DECRYPT_CHUNK
from ..container import ContainerKind, OPS_PAGE_SIZE, detect_container
from ..errors import ContainerError
from ..extractor import (
    CallingThreadFilter,
    attach_log_handler,
    extract_container,
    load_ofp_manifest,
    load_ops_manifest,
)
from ..manifest import ManifestEntry, OFP_POLICY, OPS_POLICY, parse_manifest

logger = logging.getLogger(__name__)


class _ListLogHandler(logging.Handler):
    """Capture the calling thread's log records into a list of formatted strings."""

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.records: List[str] = []
        self.addFilter(CallingThreadFilter())
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(self.format(record))


@contextmanager
def _capture_logs():
    """Capture this thread's package log lines for the duration of an action."""
    with attach_log_handler(_ListLogHandler()) as handler:
        yield handler.records


def entry_to_dict(entry: ManifestEntry) -> Dict[str, Any]:
    """JSON-friendly view of a manifest entry."""
    return {
        "path": entry.path,
        "section": entry.section,
        "offset": entry.offset,
        "length": entry.length,
        "action": entry.action.value,
        "offset_source": type(entry.offset_source).__name__,
    }


def _manifest_hash(xml: str) -> str:
    return hashlib.sha256(xml.encode("utf-8")).hexdigest()


def extract_firmware(
    container_path: str,
    output_dir: Optional[str] = None,
    kind: Optional[ContainerKind] = None,
    decrypt_chunk_size: int = DEFAULT_DECRYPT_CHUNK,
    progress_cb: Optional[Callable[[str], None]] = None,
) -> OperationResult:
    """
    Extract a firmware container.

    Args:
        container_path: .ofp / .ops / ZIP file
        output_dir: Target directory (default: sibling "extract")
        kind: Force a container kind
        decrypt_chunk_size: Decrypted prefix for ordinary entries
        progress_cb: Optional callback receiving progress lines

    Returns:
        OperationResult with:
            - ok: True if every entry was written
            - output_dir: extraction directory
            - files_written: number of output files
            - key: matched key-set version or mbox name
            - page_size: discovered page size
            - metadata["entries"]: list of entry dicts
            - hashes["manifest_sha256"]: hash of the saved manifest
    """
    with _capture_logs() as logs:
        try:
            options = ExtractOptions(
                output_dir=output_dir,
                kind=kind,
                decrypt_chunk_size=decrypt_chunk_size,
            )
            extraction = extract_container(container_path, options, log_cb=progress_cb)
        except (ContainerError, OSError, ValueError) as e:
            logger.error("Extraction failed: %s", e)
            return OperationResult.failure(
                "extract",
                str(e),
                container=str(container_path),
                logs=list(logs),
            )

        result = OperationResult.success(
            "extract",
            container=str(container_path),
            kind=extraction.kind.value,
            output_dir=str(extraction.output_dir),
            key=extraction.key_label,
            page_size=extraction.page_size,
            files_written=len(extraction.files),
        )
        result.metadata["entries"] = [entry_to_dict(e) for e in extraction.entries]
        if extraction.manifest_path is not None:
            result.metadata["manifest_path"] = str(extraction.manifest_path)
            result.hashes["manifest_sha256"] = hashlib.sha256(
                extraction.manifest_path.read_bytes()
            ).hexdigest()
        if extraction.kind is ContainerKind.ZIP:
            result.add_warning("ZIP container extracted as-is (no manifest)")

    result.logs = list(logs)
    return result


def _load_manifest(path: Path, kind: ContainerKind) -> Dict[str, Any]:
    if kind is ContainerKind.OPS:
        ops_layout, mbox = load_ops_manifest(path)
        entries = parse_manifest(mbox.xml, OPS_PAGE_SIZE, OPS_POLICY)
        return {
            "xml": mbox.xml,
            "key": mbox.label,
            "page_size": OPS_PAGE_SIZE,
            "manifest_offset": ops_layout.manifest_offset,
            "manifest_length": ops_layout.xml_length,
            "entries": entries,
        }

    ofp_layout, key = load_ofp_manifest(path)
    entries = parse_manifest(key.xml, ofp_layout.page_size, OFP_POLICY)
    return {
        "xml": key.xml,
        "key": key.label,
        "page_size": ofp_layout.page_size,
        "manifest_offset": ofp_layout.manifest_offset,
        "manifest_length": ofp_layout.manifest_length,
        "entries": entries,
    }


def inspect_container(
    container_path: str,
    kind: Optional[ContainerKind] = None,
) -> OperationResult:
    """
    Identify a container and describe its manifest without extracting.

    Returns:
        OperationResult with key and page_size set, and metadata keys: size,
        manifest_offset, manifest_length, entries (or members for ZIP).
    """
    with _capture_logs() as logs:
        try:
            container = detect_container(container_path, kind)
            result = OperationResult.success(
                "inspect",
                container=str(container.path),
                kind=container.kind.value,
            )
            result.metadata["size"] = container.size

            if container.kind is ContainerKind.ZIP:
                with zipfile.ZipFile(container.path) as zf:
                    members: List[Dict[str, Any]] = [
                        {
                            "path": info.filename,
                            "length": info.file_size,
                            "encrypted": bool(info.flag_bits & 0x1),
                        }
                        for info in zf.infolist()
                        if not info.is_dir()
                    ]
                result.metadata["members"] = members
                if any(m["encrypted"] for m in members):
                    result.add_warning("Password-protected ZIP members are not supported")
            else:
                info = _load_manifest(container.path, container.kind)
                result.key = info["key"]
                result.page_size = info["page_size"]
                result.metadata["manifest_offset"] = info["manifest_offset"]
                result.metadata["manifest_length"] = info["manifest_length"]
                result.metadata["entries"] = [entry_to_dict(e) for e in info["entries"]]
                result.hashes["manifest_sha256"] = _manifest_hash(info["xml"])
        except (ContainerError, OSError, zipfile.BadZipFile) as e:
            logger.error("Inspection failed: %s", e)
            return OperationResult.failure(
                "inspect",
                str(e),
                container=str(container_path),
                logs=list(logs),
            )

    result.logs = list(logs)
    return result


def read_manifest(
    container_path: str,
    kind: Optional[ContainerKind] = None,
) -> OperationResult:
    """
    Decrypt and return the manifest text.

    Returns:
        OperationResult with key and metadata["xml"].
    """
    with _capture_logs() as logs:
        try:
            container = detect_container(container_path, kind)
            if container.kind is ContainerKind.ZIP:
                return OperationResult.failure(
                    "manifest",
                    "ZIP containers carry no encrypted manifest",
                    container=str(container.path),
                    kind=container.kind.value,
                    logs=list(logs),
                )
            info = _load_manifest(container.path, container.kind)
        except (ContainerError, OSError) as e:
            logger.error("Manifest decryption failed: %s", e)
            return OperationResult.failure(
                "manifest",
                str(e),
                container=str(container_path),
                logs=list(logs),
            )

        result = OperationResult.success(
            "manifest",
            container=str(container.path),
            kind=container.kind.value,
            key=info["key"],
            page_size=info["page_size"],
        )
        result.metadata["xml"] = info["xml"]
        result.hashes["manifest_sha256"] = _manifest_hash(info["xml"])

    result.logs = list(logs)
    return result
