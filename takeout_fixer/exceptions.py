"""
Custom exception hierarchy for the takeout fixer.

Only SourceRootError is fatal to a run; everything else is caught per file,
logged and counted.
"""


class TakeoutFixerError(Exception):
    """Base exception for all takeout fixer errors."""
    pass


class SourceRootError(TakeoutFixerError):
    """Raised when the source tree is missing or cannot be listed."""
    pass


class SidecarParseError(TakeoutFixerError):
    """Raised when a JSON sidecar cannot be read or decoded."""
    pass


class MetadataExtractionError(TakeoutFixerError):
    """Raised when no reader can extract metadata from a media file."""
    pass


class FileOperationError(TakeoutFixerError):
    """Raised when copying a file or setting its timestamps fails."""
    pass


class MetadataWriteError(TakeoutFixerError):
    """Raised when the external metadata writer cannot be invoked."""
    pass
