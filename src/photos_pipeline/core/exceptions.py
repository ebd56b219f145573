"""Exception taxonomy for the photos pipeline."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator, Optional


class PhotosPipelineError(Exception):
    """Base exception for all photos pipeline errors."""


class ConfigurationError(PhotosPipelineError):
    """Error raised for invalid or missing configuration."""


class S3Error(PhotosPipelineError):
    """Error raised for S3 related failures."""


class HierarchyError(PhotosPipelineError):
    """A storage key does not follow year/album[/sub-album]/file.

    Not retried: the key will never parse, so the event is logged and dropped.
    """

    def __init__(self, key: str, segment_count: int, detail: Optional[str] = None):
        self.key = key
        self.segment_count = segment_count
        detail = detail or (
            f"has {segment_count} path segments, expected 3 or 4 "
            "(year/album[/sub-album]/file)"
        )
        super().__init__(f"Key {key!r} {detail}")


class UnsupportedFormatError(PhotosPipelineError):
    """The source extension is outside the supported codec set."""

    def __init__(self, key: str, extension: Optional[str]):
        self.key = key
        self.extension = extension
        super().__init__(f"Unsupported image type {extension!r} for key {key!r}")


class DerivationError(PhotosPipelineError):
    """Decode, resize, encode, upload or enqueue failed for one image."""

    def __init__(self, message: str, key: Optional[str] = None):
        self.key = key
        super().__init__(message)


class CompensationError(PhotosPipelineError):
    """Cleanup after a failed derivation itself failed.

    ``original`` always holds the derivation error that triggered the cleanup.
    """

    def __init__(self, message: str, original: BaseException):
        self.original = original
        super().__init__(f"{message} (original failure: {original})")


class DatabaseConnectionError(PhotosPipelineError):
    """Credential resolution or pool acquisition failed."""


class BatchParseError(PhotosPipelineError):
    """A queued write request could not be parsed; the whole batch fails."""


@contextmanager
def batch_error_handler(message_id: str = "") -> Iterator[Any]:
    """Turn any failure inside the block into a ``BatchParseError``."""
    try:
        yield
    except PhotosPipelineError:
        raise
    except Exception as exc:  # noqa: BLE001
        prefix = f"message {message_id}: " if message_id else ""
        raise BatchParseError(f"{prefix}{exc}") from exc
