"""Storage key parsing: the year/album[/sub-album]/file hierarchy.

Everything here is pure; no I/O.
"""

from typing import Optional, Tuple
from urllib.parse import unquote_plus

from .exceptions import HierarchyError, UnsupportedFormatError
from .models import PathIdentity

SUPPORTED_SOURCE_EXTENSIONS = frozenset({"jpg", "jpeg", "png"})


def decode_key(raw_key: str) -> str:
    """
    Decode an S3 event key.

    Event notifications escape keys: spaces arrive as ``+`` and non-ASCII
    characters percent-encoded.

    >>> decode_key("2021/spain/my+photo%C3%B1.jpg")
    '2021/spain/my photoñ.jpg'
    """
    return unquote_plus(raw_key)


def split_key(key: str) -> Tuple[str, str]:
    """
    Split a key into (directory prefix, filename).

    The directory keeps its trailing separator so that artifact keys are a
    plain concatenation.
    """
    directory, sep, filename = key.rpartition("/")
    return (directory + sep, filename)


def file_extension(key: str) -> Optional[str]:
    """Return the text after the last ``.`` of the filename, or ``None``."""
    _, filename = split_key(key)
    stem, dot, extension = filename.rpartition(".")
    if not dot:
        return None
    return extension


def is_directory_key(key: str) -> bool:
    """A key without an extension denotes a directory, not a file."""
    return file_extension(key) is None


def ensure_supported_format(key: str) -> str:
    """
    Return the lower-cased source extension.

    Raises:
        UnsupportedFormatError: If the extension is not a supported source codec
    """
    extension = file_extension(key)
    if extension is None or extension.lower() not in SUPPORTED_SOURCE_EXTENSIONS:
        raise UnsupportedFormatError(key, extension)
    return extension.lower()


def parse_key(key: str) -> PathIdentity:
    """
    Derive a ``PathIdentity`` from a decoded storage key.

    Args:
        key: Decoded key such as ``2021/spain/madrid/sunset.jpg``

    Returns:
        PathIdentity with year, album, optional sub-album and base name

    Raises:
        HierarchyError: If the key does not have exactly 3 or 4 segments,
            or the year segment is not numeric
        UnsupportedFormatError: If the filename has no extension
    """
    segments = key.split("/")
    if len(segments) not in (3, 4) or not all(segments):
        raise HierarchyError(key, len(segments))

    directory, filename = split_key(key)
    stem, dot, extension = filename.rpartition(".")
    if not dot:
        raise UnsupportedFormatError(key, None)

    year_segment = segments[0]
    if not year_segment.isdigit():
        raise HierarchyError(key, len(segments), f"has non-numeric year segment {year_segment!r}")

    return PathIdentity(
        year=int(year_segment),
        album=segments[1],
        sub_album=segments[2] if len(segments) == 4 else None,
        base_name=stem,
        directory=directory,
        extension=extension,
    )


def artifact_key(identity: PathIdentity, size_label: str, encoding: str) -> str:
    """
    Compute the storage key of one derivative.

    >>> identity = parse_key("2021/spain/madrid/sunset.jpg")
    >>> artifact_key(identity, "small", "webp")
    '2021/spain/madrid/sunset_small.webp'
    """
    return f"{identity.directory}{identity.base_name}_{size_label}.{encoding}"
