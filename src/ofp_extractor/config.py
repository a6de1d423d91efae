"""
Extraction settings.

Defaults reproduce the vendor tool: 256 KiB decrypted prefix for ordinary
entries, 1 MiB copy buffer, output in a sibling ``extract`` directory.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from .container import ContainerKind


DEFAULT_DECRYPT_CHUNK = 0x40000
COPY_BUFFER_SIZE = 0x100000
DEFAULT_OUTPUT_NAME = "extract"


@dataclass
class ExtractOptions:
    """
    Options for one extraction run.

    Attributes:
        output_dir: Target directory (default: ``<container dir>/extract``)
        kind: Force a container kind instead of detecting it
        decrypt_chunk_size: Prefix decrypted for non-Sahara entries
        copy_buffer_size: Buffer used for verbatim copies
        save_manifest: Write ProFile.xml / settings.xml next to the entries
    """
    output_dir: Optional[Union[str, Path]] = None
    kind: Optional[ContainerKind] = None
    decrypt_chunk_size: int = DEFAULT_DECRYPT_CHUNK
    copy_buffer_size: int = COPY_BUFFER_SIZE
    save_manifest: bool = True

    def __post_init__(self) -> None:
        if self.decrypt_chunk_size <= 0:
            raise ValueError(f"decrypt_chunk_size must be positive, got {self.decrypt_chunk_size}")
        if self.copy_buffer_size <= 0:
            raise ValueError(f"copy_buffer_size must be positive, got {self.copy_buffer_size}")

    def resolve_output_dir(self, container_path: Union[str, Path]) -> Path:
        if self.output_dir is not None:
            return Path(self.output_dir)
        return Path(container_path).parent / DEFAULT_OUTPUT_NAME
