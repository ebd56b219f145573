"""Shared data models for the photos pipeline."""

import os
from enum import Enum
from typing import Any, ClassVar, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .exceptions import ConfigurationError


class PipelineConfig(BaseModel):
    """Runtime configuration, usually read from the Lambda environment."""

    resized_bucket: str = Field(min_length=1)
    metadata_queue_url: str = ""
    heroku_api_key: str = ""
    heroku_postgres_id: str = ""
    heroku_api_url: str = "https://api.heroku.com"
    max_workers: int = Field(default=12, ge=1)
    derive_timeout: Optional[float] = Field(default=None, gt=0)
    timeout_reserve: float = Field(default=5.0, ge=0)
    pool_max_idle: float = 120.0
    pool_connect_timeout: float = 10.0
    client_connect_timeout: float = Field(default=2.0, gt=0)
    client_read_timeout: float = Field(default=5.0, gt=0)
    client_max_attempts: int = Field(default=2, ge=1)
    debug: bool = False

    ENV_VARS: ClassVar[Dict[str, str]] = {
        "resized_bucket": "RESIZED_PHOTOS_BUCKET",
        "metadata_queue_url": "IMAGE_META_TO_PG_QUEUE_URL",
        "heroku_api_key": "HEROKU_API_KEY",
        "heroku_postgres_id": "HEROKU_POSTGRES_ID",
        "heroku_api_url": "HEROKU_API_URL",
        "max_workers": "FANOUT_MAX_WORKERS",
        "derive_timeout": "DERIVE_TIMEOUT_SECONDS",
        "timeout_reserve": "TIMEOUT_RESERVE_SECONDS",
        "client_connect_timeout": "CLIENT_CONNECT_TIMEOUT_SECONDS",
        "client_read_timeout": "CLIENT_READ_TIMEOUT_SECONDS",
        "client_max_attempts": "CLIENT_MAX_ATTEMPTS",
    }

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        **overrides: Any,
    ) -> "PipelineConfig":
        """Build a config from environment variables, then apply overrides."""
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {
            field: environ[var] for field, var in cls.ENV_VARS.items() if environ.get(var)
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return cls(**values)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid pipeline configuration: {exc}") from exc

    def require_queue(self) -> str:
        if not self.metadata_queue_url:
            raise ConfigurationError("IMAGE_META_TO_PG_QUEUE_URL is not set")
        return self.metadata_queue_url

    @property
    def client_stall_bound(self) -> float:
        """Longest a single AWS call can block, every attempt included."""
        return self.client_max_attempts * (self.client_connect_timeout + self.client_read_timeout)


class PathIdentity(BaseModel):
    """Structured identity of a source image derived from its storage key."""

    model_config = ConfigDict(frozen=True)

    year: int
    album: str
    sub_album: Optional[str] = None
    base_name: str
    directory: str
    extension: str


class SourceImageRef(BaseModel):
    """A source image as received by one invocation."""

    model_config = ConfigDict(frozen=True)

    bucket: str
    key: str
    body: bytes
    alt_text: Optional[str] = None


class MetadataRecord(BaseModel):
    """Row describing a fully derived image."""

    directory: str
    base_name: str
    year: int
    album: str
    sub_album: Optional[str] = None
    width: int
    height: int
    alt_text: Optional[str] = None
    formats: List[str] = Field(default_factory=list)


class WriteRequest(BaseModel):
    """A single-row write: statement text with ``$n`` placeholders plus values.

    Serialized as ``{"text": ..., "values": [...]}`` on the metadata queue.
    """

    text: str = Field(min_length=1)
    values: List[Any]


class DerivationStatus(str, Enum):
    DERIVED = "derived"
    SKIPPED = "skipped"
    FAILED = "failed"


class DerivationResult(BaseModel):
    """Result of handling a single creation event."""

    source_key: str
    status: DerivationStatus = DerivationStatus.FAILED
    artifact_keys: List[str] = Field(default_factory=list)
    width: Optional[int] = None
    height: Optional[int] = None
    error: str = ""
    processing_time: float = 0.0

    @property
    def success(self) -> bool:
        return self.status == DerivationStatus.DERIVED


class DeletionResult(BaseModel):
    """Result of handling a single deletion event."""

    source_key: str
    prefix_delete: bool = False
    deleted_keys: int = 0
    pages: int = 0
    metadata_deleted: bool = False
    skipped: bool = False


class BatchResult(BaseModel):
    """Outcome of one ingestion batch."""

    message_count: int
    rows_inserted: int = 0
    success: bool = False
