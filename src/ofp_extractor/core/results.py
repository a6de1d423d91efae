"""
Result objects for core operations.

Every action (extract, inspect, manifest) reports through one
``OperationResult`` so the CLI can render text or JSON the same way.
"""

from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional


@dataclass
class OperationResult:
    """
    Outcome of one container operation.

    Attributes:
        ok: Whether the operation completed successfully
        operation: "extract", "inspect" or "manifest"
        container: Path of the input container
        kind: Detected container kind ("ofp", "ops", "zip")
        key: Matched key-set version (OFP) or mbox name (OPS)
        page_size: Page size used to scale manifest offsets
        output_dir: Extraction directory, if any
        files_written: Number of files produced
        hashes: Hash values (manifest sha256)
        warnings: Non-blocking issues encountered
        errors: Blocking errors that caused failure
        metadata: Operation-specific data (entries, manifest location, xml)
        logs: Log lines captured from the calling thread
    """
    ok: bool
    operation: str
    container: str = ""
    kind: str = ""
    key: Optional[str] = None
    page_size: Optional[int] = None
    output_dir: str = ""
    files_written: int = 0
    hashes: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    logs: List[str] = field(default_factory=list)

    @property
    def entry_count(self) -> int:
        """Number of manifest entries (ZIP members for plain archives)."""
        return len(self.metadata.get("entries") or self.metadata.get("members") or [])

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def to_summary(self) -> str:
        """Human-readable multi-line summary."""
        status = "SUCCESS" if self.ok else "FAILED"
        lines = [f"[{status}] {self.operation} {self.container}".rstrip()]

        if self.kind:
            lines.append(f"  Format: {self.kind.upper()}")
        if self.key:
            lines.append(f"  Key: {self.key}")
        if self.page_size:
            lines.append(f"  Page size: 0x{self.page_size:X}")
        if self.entry_count:
            lines.append(f"  Entries: {self.entry_count}")
        if self.output_dir:
            lines.append(f"  Output: {self.output_dir} ({self.files_written} files)")
        if "manifest_sha256" in self.hashes:
            lines.append(f"  Manifest sha256: {self.hashes['manifest_sha256'][:16]}...")

        lines.extend(f"  Warning: {warn}" for warn in self.warnings)
        lines.extend(f"  Error: {err}" for err in self.errors)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "ok": self.ok,
            "operation": self.operation,
            "container": self.container,
            "kind": self.kind,
            "key": self.key,
            "page_size": self.page_size,
            "entry_count": self.entry_count,
            "output_dir": self.output_dir,
            "files_written": self.files_written,
            "hashes": self.hashes,
            "warnings": self.warnings,
            "errors": self.errors,
            "metadata": self.metadata,
            "logs": self.logs,
        }

    @classmethod
    def success(cls, operation: str, container: str = "", kind: str = "", **kwargs) -> "OperationResult":
        return cls(ok=True, operation=operation, container=container, kind=kind, **kwargs)

    @classmethod
    def failure(cls, operation: str, error: str, container: str = "", **kwargs) -> "OperationResult":
        result = cls(ok=False, operation=operation, container=container, **kwargs)
        result.errors.append(error)
        return result
