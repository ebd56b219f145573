"""Statements against the ``photos_meta`` table and the write requests built from them."""

from typing import List, Tuple

from .models import MetadataRecord, WriteRequest

PHOTOS_META_TABLE = "photos_meta"

METADATA_COLUMNS: Tuple[str, ...] = (
    "dir_path",
    "name",
    "year",
    "album",
    "sub_album",
    "width",
    "height",
    "alt_text",
    "formats",
)
CONFLICT_COLUMNS: Tuple[str, ...] = ("dir_path", "name")


def _placeholders(count: int) -> str:
    return ", ".join(f"${i}" for i in range(1, count + 1))


INSERT_METADATA = (
    f"INSERT INTO {PHOTOS_META_TABLE} ({', '.join(METADATA_COLUMNS)}) "
    f"VALUES ({_placeholders(len(METADATA_COLUMNS))}) "
    f"ON CONFLICT ({', '.join(CONFLICT_COLUMNS)}) DO NOTHING"
)

DELETE_IMAGE_METADATA = f"DELETE FROM {PHOTOS_META_TABLE} WHERE name = %s AND dir_path = %s"

DELETE_DIRECTORY_METADATA = f"DELETE FROM {PHOTOS_META_TABLE} WHERE dir_path LIKE %s"


def record_values(record: MetadataRecord) -> List[object]:
    """Values for ``INSERT_METADATA`` in column order."""
    return [
        record.directory,
        record.base_name,
        record.year,
        record.album,
        record.sub_album,
        record.width,
        record.height,
        record.alt_text,
        list(record.formats),
    ]


def build_insert_request(record: MetadataRecord) -> WriteRequest:
    """The single-row write request published for one derived image."""
    return WriteRequest(text=INSERT_METADATA, values=record_values(record))


def like_prefix(prefix: str) -> str:
    """Escape LIKE wildcards in a directory prefix and append ``%``."""
    escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped + "%"
