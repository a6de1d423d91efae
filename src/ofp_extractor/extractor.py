"""
Extraction pipeline for OFP/OPS/ZIP firmware containers.

Flow for encrypted containers:
1. Identify the container and locate the encrypted manifest
2. Resolve the key (OFP key table / OPS mbox variants) against it
3. Save the manifest and interpret it into entries
4. Write one output file per entry, copying or decrypting per section

Entries in decrypt sections only get a bounded prefix decrypted (the whole
entry for Sahara); bytes past that prefix are copied as-is. This mirrors
the vendor tool and is kept intentionally.
"""

from __future__ import annotations

import logging
import shutil
import threading
import zipfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from .config import ExtractOptions
from .container import (
    OPS_PAGE_SIZE,
    ContainerKind,
    OfpLayout,
    OpsLayout,
    detect_container,
    locate_ofp_manifest,
    locate_ops_manifest,
    read_region,
)
from .errors import ContainerError, ContainerIOError, FormatNotRecognizedError, KeyNotFoundError
from .key_resolver import EntryDecryptor, ResolvedKey, ResolvedMbox, resolve_ofp_key, resolve_ops_mbox
from .manifest import OFP_POLICY, OPS_POLICY, EntryAction, ManifestEntry, parse_manifest

logger = logging.getLogger(__name__)

LogCallback = Callable[[str], None]

PACKAGE_LOGGER = "ofp_extractor"
WORD_ALIGN = 4

MANIFEST_NAMES: Dict[ContainerKind, str] = {
    ContainerKind.OFP: "ProFile.xml",
    ContainerKind.OPS: "settings.xml",
}


@dataclass
class ExtractionResult:
    """Outcome of a successful extraction."""
    output_dir: Path
    kind: ContainerKind
    files: List[Path] = field(default_factory=list)
    entries: List[ManifestEntry] = field(default_factory=list)
    manifest_path: Optional[Path] = None
    key_label: Optional[str] = None
    page_size: Optional[int] = None


class CallingThreadFilter(logging.Filter):
    """Accept only records emitted by the thread that created the filter."""

    def __init__(self) -> None:
        super().__init__()
        self.thread = threading.get_ident()

    def filter(self, record: logging.LogRecord) -> bool:
        return record.thread == self.thread


class _CallbackLogHandler(logging.Handler):
    """Forward log records from the calling thread to a line callback."""

    def __init__(self, callback: LogCallback, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.callback = callback
        self.addFilter(CallingThreadFilter())
        self.setFormatter(logging.Formatter("%(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        self.callback(self.format(record))


_level_lock = threading.Lock()
_level_users = 0
_saved_level = logging.NOTSET


@contextmanager
def attach_log_handler(handler: logging.Handler) -> Iterator[logging.Handler]:
    """
    Attach ``handler`` to the package logger for the duration of a call.

    The logger level is raised to INFO while any handler is attached and
    restored when the last one detaches, so overlapping calls from other
    threads keep receiving their INFO records.
    """
    global _level_users, _saved_level
    target_logger = logging.getLogger(PACKAGE_LOGGER)
    with _level_lock:
        if _level_users == 0:
            _saved_level = target_logger.level
            if _saved_level in (logging.NOTSET, logging.WARNING, logging.ERROR, logging.CRITICAL):
                target_logger.setLevel(logging.INFO)
        _level_users += 1
    target_logger.addHandler(handler)
    try:
        yield handler
    finally:
        target_logger.removeHandler(handler)
        with _level_lock:
            _level_users -= 1
            if _level_users == 0:
                target_logger.setLevel(_saved_level)


@contextmanager
def _callback_logs(log_cb: Optional[LogCallback]) -> Iterator[None]:
    """Route package log lines to ``log_cb`` for the duration of a call."""
    if log_cb is None:
        yield
        return
    with attach_log_handler(_CallbackLogHandler(log_cb)):
        yield


def copy_range(src: BinaryIO, dst: BinaryIO, length: int, buffer_size: int) -> int:
    """Stream up to ``length`` bytes from the current position of ``src``."""
    remaining = length
    while remaining > 0:
        chunk = src.read(min(buffer_size, remaining))
        if not chunk:
            break
        dst.write(chunk)
        remaining -= len(chunk)
    return length - remaining


def decrypt_size_for(entry: ManifestEntry, chunk_size: int) -> int:
    """Number of leading bytes of ``entry`` that get decrypted."""
    if entry.action is EntryAction.DECRYPT_FULL:
        return entry.length
    return min(chunk_size, entry.length)


def extract_entry(
    src: BinaryIO,
    entry: ManifestEntry,
    output_dir: Path,
    decryptor: EntryDecryptor,
    options: ExtractOptions,
) -> Path:
    """Write one manifest entry below ``output_dir``."""
    dest = output_dir / entry.path
    dest.parent.mkdir(parents=True, exist_ok=True)
    src.seek(entry.offset)

    with dest.open("wb") as dst:
        if entry.action is EntryAction.COPY:
            logger.info("Extracting %s", entry.path)
            copy_range(src, dst, entry.length, options.copy_buffer_size)
            return dest

        logger.info("Decrypting %s", entry.path)
        size = decrypt_size_for(entry, options.decrypt_chunk_size)
        data = src.read(size)
        if len(data) != size:
            raise ContainerIOError(
                f"Short read for {entry.path} at 0x{entry.offset:X}: wanted {size}, got {len(data)}"
            )
        padded = data + b"\x00" * (-size % WORD_ALIGN)
        dst.write(decryptor(padded)[:size])

        # Bytes past the decrypted prefix are written as stored.
        if entry.length > size:
            copy_range(src, dst, entry.length - size, options.copy_buffer_size)
    return dest


def write_entries(
    container_path: Path,
    entries: Sequence[ManifestEntry],
    output_dir: Path,
    decryptor: EntryDecryptor,
    options: ExtractOptions,
) -> List[Path]:
    """Extract all entries in manifest order; the first failure aborts."""
    written: List[Path] = []
    try:
        with container_path.open("rb") as src:
            for entry in entries:
                written.append(extract_entry(src, entry, output_dir, decryptor, options))
    except OSError as e:
        raise ContainerIOError(f"Extraction I/O failure: {e}") from e
    return written


def prepare_output_dir(output_dir: Path) -> Path:
    """Delete and recreate ``output_dir`` (runs are never incremental)."""
    try:
        if output_dir.exists():
            shutil.rmtree(output_dir)
        output_dir.mkdir(parents=True)
    except OSError as e:
        raise ContainerIOError(f"Cannot prepare output directory {output_dir}: {e}") from e
    return output_dir


def load_ofp_manifest(path: Union[str, Path]) -> Tuple[OfpLayout, ResolvedKey]:
    """Locate and decrypt the manifest of an OFP container."""
    layout = locate_ofp_manifest(path)
    ciphertext = read_region(path, layout.manifest_offset, layout.manifest_length)
    logger.debug("Encrypted data first 16 bytes: %s", ciphertext[:16].hex())
    return layout, resolve_ofp_key(ciphertext)


def load_ops_manifest(path: Union[str, Path]) -> Tuple[OpsLayout, ResolvedMbox]:
    """Locate and decrypt the manifest of an OPS container."""
    layout = locate_ops_manifest(path)
    ciphertext = read_region(path, layout.manifest_offset, layout.manifest_length)
    return layout, resolve_ops_mbox(ciphertext, layout.xml_length)


def extract_zip(path: Path, output_dir: Path) -> List[Path]:
    """Extract a plain ZIP container. Password-protected archives are refused."""
    try:
        with zipfile.ZipFile(path) as zf:
            encrypted = [info.filename for info in zf.infolist() if info.flag_bits & 0x1]
            if encrypted:
                raise KeyNotFoundError(
                    f"Password-protected ZIP is not supported ({len(encrypted)} encrypted members)"
                )
            zf.extractall(output_dir)
    except zipfile.BadZipFile as e:
        raise FormatNotRecognizedError(f"Invalid ZIP container: {e}") from e
    except OSError as e:
        raise ContainerIOError(f"ZIP extraction failed: {e}") from e
    logger.info("Extracted ZIP to %s", output_dir)
    return sorted(p for p in output_dir.rglob("*") if p.is_file())


def _extract_container(path: Union[str, Path], options: ExtractOptions) -> ExtractionResult:
    container = detect_container(path, options.kind)
    output_dir = options.resolve_output_dir(container.path)
    prepare_output_dir(output_dir)

    if container.kind is ContainerKind.ZIP:
        logger.info("ZIP file detected, extracting...")
        files = extract_zip(container.path, output_dir)
        return ExtractionResult(output_dir=output_dir, kind=container.kind, files=files)

    resolved: Union[ResolvedKey, ResolvedMbox]
    if container.kind is ContainerKind.OPS:
        _, resolved = load_ops_manifest(container.path)
        page_size = OPS_PAGE_SIZE
        policy = OPS_POLICY
    else:
        ofp_layout, resolved = load_ofp_manifest(container.path)
        page_size = ofp_layout.page_size
        policy = OFP_POLICY

    manifest_path = None
    if options.save_manifest:
        manifest_path = output_dir / MANIFEST_NAMES[container.kind]
        manifest_path.write_bytes(resolved.xml.encode("utf-8"))
        logger.info("Saved %s", manifest_path.name)

    entries = parse_manifest(resolved.xml, page_size, policy)
    files = write_entries(container.path, entries, output_dir, resolved.decryptor(), options)

    logger.info("Done. Extracted files to %s", output_dir)
    return ExtractionResult(
        output_dir=output_dir,
        kind=container.kind,
        files=files,
        entries=entries,
        manifest_path=manifest_path,
        key_label=resolved.label,
        page_size=page_size,
    )


def extract_container(
    path: Union[str, Path],
    options: Optional[ExtractOptions] = None,
    log_cb: Optional[LogCallback] = None,
) -> ExtractionResult:
    """
    Extract a container, raising on failure.

    Args:
        path: .ofp / .ops / ZIP file
        options: Extraction settings (defaults to ExtractOptions())
        log_cb: Optional callback receiving human-readable progress lines

    Returns:
        ExtractionResult

    Raises:
        ContainerError subclasses (FormatNotRecognizedError, KeyNotFoundError,
        ManifestMalformedError, ContainerIOError)
    """
    with _callback_logs(log_cb):
        return _extract_container(path, options or ExtractOptions())


def decrypt(
    path: Union[str, Path],
    output_dir: Optional[Union[str, Path]] = None,
    log_cb: Optional[LogCallback] = None,
) -> Optional[Path]:
    """
    Extract a container and return the output directory, or None on failure.

    Failures are reported through the log (and ``log_cb``) only.
    """
    with _callback_logs(log_cb):
        try:
            result = _extract_container(path, ExtractOptions(output_dir=output_dir))
        except (ContainerError, OSError) as e:
            logger.error("Extraction failed: %s", e)
            return None
        return result.output_dir
