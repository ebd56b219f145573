"""Image decode, orientation, resize and encode helpers."""

import io
from typing import Any, Dict, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from .catalog import EncodingSpec
from .exceptions import DerivationError

# Pillow's save() format names for the encodings the catalog may request
PILLOW_FORMATS = {
    "avif": "AVIF",
    "webp": "WEBP",
    "jpeg": "JPEG",
    "jpg": "JPEG",
    "png": "PNG",
}

_OPAQUE_ONLY = {"JPEG"}


def decode_image(image_bytes: bytes) -> "Image.Image":
    """
    Decode source bytes into a fully loaded PIL image.

    Raises:
        DerivationError: If Pillow cannot identify or load the data
    """
    try:
        image = Image.open(io.BytesIO(image_bytes))
        image.load()
    except (UnidentifiedImageError, OSError, SyntaxError, Image.DecompressionBombError) as exc:
        raise DerivationError(f"Could not decode source image: {exc}") from exc
    return image


def normalize_orientation(img: "Image.Image") -> "Image.Image":
    """
    Bake the EXIF orientation tag into the pixel data.

    Browsers and image CDNs do not reliably honour the tag, so every
    derivative must already be upright.
    """
    normalized = ImageOps.exif_transpose(img)
    return normalized if normalized is not None else img


def target_size(size: Tuple[int, int], target_width: int) -> Tuple[int, int]:
    """
    Compute the output size for a width-constrained resize.

    Aspect ratio is kept and images narrower than the target are never
    enlarged.
    """
    width, height = size
    if width <= target_width:
        return width, height
    new_height = max(1, round(height * target_width / width))
    return target_width, new_height


def resize_to_width(img: "Image.Image", target_width: int) -> "Image.Image":
    """Resize from the given base image; callers never cascade from a derivative."""
    new_size = target_size(img.size, target_width)
    if new_size == img.size:
        return img.copy()
    return img.resize(new_size, Image.Resampling.LANCZOS)


def _prepare_mode(img: "Image.Image", pillow_format: str) -> "Image.Image":
    # always a fresh instance: save() stores encoder state on the image and
    # one resized raster is encoded by several threads at once
    if pillow_format in _OPAQUE_ONLY:
        return img.convert("RGB")
    if img.mode not in ("RGB", "RGBA", "L"):
        return img.convert("RGBA")
    return img.copy()


def encode_image(img: "Image.Image", encoding: EncodingSpec) -> bytes:
    """
    Encode an image with the catalog's settings for one encoding.

    Raises:
        DerivationError: If the encoding is unknown or Pillow fails to save
    """
    pillow_format = PILLOW_FORMATS.get(encoding.name)
    if pillow_format is None:
        raise DerivationError(f"No encoder registered for {encoding.name!r}")

    output = io.BytesIO()
    try:
        _prepare_mode(img, pillow_format).save(output, format=pillow_format, **encoding.save_kwargs())
    except (OSError, ValueError, KeyError) as exc:
        raise DerivationError(f"Failed to encode {encoding.name}: {exc}") from exc
    return output.getvalue()


def describe_image(img: "Image.Image") -> Dict[str, Any]:
    """Basic image information for logging."""
    return {
        "width": img.width,
        "height": img.height,
        "format": img.format or "unknown",
        "mode": img.mode,
    }
