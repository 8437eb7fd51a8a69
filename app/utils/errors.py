"""
Error taxonomy for the ingestion pipeline.

Workers classify failures by exception type:
- TransientError: retried with backoff
- PermanentError: terminal on first occurrence
- WatchSourceError: fatal to a single watch source, never to the process
- StoreError: fatal to the task that hit it
"""

from typing import Dict


class IngestError(Exception):
    """Base class for all ingestion errors."""


class TransientError(IngestError):
    """Failure that may succeed on a later attempt."""


class PermanentError(IngestError):
    """Failure that will not go away by retrying."""


class FileUnavailableError(TransientError):
    """File exists but could not be read right now (locked, permissions in flux)."""


class InvalidResponseError(TransientError):
    """Analyzer output could not be parsed into insights."""


class UnsupportedFormatError(PermanentError):
    """No extractor understands the file and it is not plain UTF-8 text."""


class EmptyContentError(PermanentError):
    """Extraction produced no usable text."""


class MalformedInputError(PermanentError):
    """Provider rejected the input as malformed."""


class WatchSourceError(IngestError):
    """A watch source could not be started or stopped."""

    def __init__(self, message: str, source_id: str = None):
        super().__init__(message)
        self.source_id = source_id


class ReloadError(WatchSourceError):
    """One or more sources failed to start during a reload."""

    def __init__(self, failures: Dict[str, Exception]):
        ids = ", ".join(sorted(failures))
        super().__init__(f"Failed to start sources: {ids}")
        self.failures = failures


class StoreError(IngestError):
    """Fingerprint store could not be read or written."""


class ConfigError(IngestError):
    """Configuration file is missing required structure or has invalid values."""
