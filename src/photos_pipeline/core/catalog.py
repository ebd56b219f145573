"""The derivative matrix: output sizes crossed with output encodings.

The same ``DerivativeCatalog`` instance drives both artifact generation and
artifact deletion, so the two key sets cannot drift apart.
"""

from typing import Any, Dict, List, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import PathIdentity
from .paths import artifact_key


class SizeSpec(BaseModel):
    """One output size: a key suffix label and the target pixel width."""

    model_config = ConfigDict(frozen=True)

    label: str
    width: int = Field(gt=0)


class EncodingSpec(BaseModel):
    """One output encoding and its quality setting."""

    model_config = ConfigDict(frozen=True)

    name: str
    quality: int = Field(default=80, ge=1, le=100)
    options: Tuple[Tuple[str, Any], ...] = ()

    @field_validator("name")
    @classmethod
    def _lowercase(cls, value: str) -> str:
        return value.lower()

    @property
    def content_type(self) -> str:
        return f"image/{self.name}"

    def save_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"quality": self.quality}
        kwargs.update(dict(self.options))
        return kwargs


class DerivativeSpec(BaseModel):
    """A single (size, encoding) cell of the matrix."""

    model_config = ConfigDict(frozen=True)

    size: SizeSpec
    encoding: EncodingSpec

    def key_for(self, identity: PathIdentity) -> str:
        return artifact_key(identity, self.size.label, self.encoding.name)


class DerivativeCatalog(BaseModel):
    """Static cross product of sizes and encodings."""

    model_config = ConfigDict(frozen=True)

    sizes: Tuple[SizeSpec, ...]
    encodings: Tuple[EncodingSpec, ...]

    @field_validator("sizes", "encodings")
    @classmethod
    def _non_empty(cls, value: tuple) -> tuple:
        if not value:
            raise ValueError("catalog dimensions must not be empty")
        return value

    def __len__(self) -> int:
        return len(self.sizes) * len(self.encodings)

    def specs(self) -> List[DerivativeSpec]:
        """All derivative specs, size-major."""
        return [
            DerivativeSpec(size=size, encoding=encoding)
            for size in self.sizes
            for encoding in self.encodings
        ]

    def artifact_keys(self, identity: PathIdentity) -> List[str]:
        """Every artifact key the catalog defines for one source image."""
        return [spec.key_for(identity) for spec in self.specs()]

    @property
    def encoding_names(self) -> List[str]:
        return [encoding.name for encoding in self.encodings]


DEFAULT_SIZES = (
    SizeSpec(label="small", width=333),
    SizeSpec(label="small@2x", width=667),
    SizeSpec(label="large", width=1500),
    SizeSpec(label="large@2x", width=3000),
)

DEFAULT_ENCODINGS = (
    EncodingSpec(name="avif", quality=50),
    EncodingSpec(name="webp", quality=80),
    EncodingSpec(name="jpeg", quality=80, options=(("progressive", True), ("optimize", True))),
)

DEFAULT_CATALOG = DerivativeCatalog(sizes=DEFAULT_SIZES, encodings=DEFAULT_ENCODINGS)
