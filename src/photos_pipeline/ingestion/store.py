"""Direct deletes against the photo metadata table."""

from ..core.metadata import DELETE_DIRECTORY_METADATA, DELETE_IMAGE_METADATA, like_prefix
from ..core.protocols import LoggerProtocol
from .pool import ConnectionLifecycleManager


class MetadataStore:
    """Removes metadata rows on the shared process pool."""

    def __init__(self, lifecycle: ConnectionLifecycleManager, logger: LoggerProtocol):
        self._lifecycle = lifecycle
        self._logger = logger

    def delete_image(self, directory: str, base_name: str) -> int:
        with self._lifecycle.connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(DELETE_IMAGE_METADATA, (base_name, directory))
                rows = max(cursor.rowcount, 0)
        self._logger.debug(f"Deleted {rows} metadata row(s) for {directory}{base_name}")
        return rows

    def delete_directory(self, prefix: str) -> int:
        if not prefix:
            raise ValueError("Refusing to delete metadata for an empty prefix")
        with self._lifecycle.connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(DELETE_DIRECTORY_METADATA, (like_prefix(prefix),))
                rows = max(cursor.rowcount, 0)
        self._logger.debug(f"Deleted {rows} metadata row(s) under {prefix}")
        return rows
