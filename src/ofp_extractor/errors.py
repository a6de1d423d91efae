"""
Exception hierarchy for container extraction.

Every failure is terminal for the whole extraction; callers that need a
plain success/failure answer should use ``extractor.decrypt`` or
``core.actions.extract_firmware``, which catch these at the boundary.
"""


class ContainerError(Exception):
    """Base exception for container extraction."""


class FormatNotRecognizedError(ContainerError):
    """Raised when no magic value or usable trailer is found."""


class KeyNotFoundError(ContainerError):
    """Raised when no key candidate yields an XML-looking manifest."""


class ManifestMalformedError(ContainerError):
    """Raised when the decrypted manifest cannot be interpreted."""


class ContainerIOError(ContainerError):
    """Raised on missing files or short reads/writes."""
