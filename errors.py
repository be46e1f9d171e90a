"""
Exception hierarchy for the redaction store.

Lookups that miss on purpose-built navigation (loading a version) raise;
writes that fail to reach storage raise; reads never raise.
"""

from typing import Optional


class RedactionError(RuntimeError):
    """Base exception for redaction store failures."""


class VersionNotFoundError(RedactionError, KeyError):
    """Raised when a requested version id does not exist in the scope."""

    def __init__(self, version_id: str, record_id: Optional[str] = None, file_name: Optional[str] = None):
        super().__init__(f"Version {version_id} not found")
        self.version_id = version_id
        self.record_id = record_id
        self.file_name = file_name

    def __str__(self) -> str:
        # KeyError would quote the message
        return str(self.args[0])


class PersistenceError(RedactionError):
    """Base exception for key-value storage failures."""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class PersistenceWriteError(PersistenceError):
    """Raised when a value could not be durably written; state did not change."""


class PersistenceReadError(PersistenceError):
    """Raised by storage backends on unreadable values. Callers in the service swallow it."""
