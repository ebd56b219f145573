"""Metadata ingestion: credential resolution, pooled connections and batch inserts."""

from .composer import ComposedStatement, StatementTemplate, compose_batch
from .consumer import IngestionConsumer, parse_record
from .pool import (
    ConnectionLifecycleManager,
    HerokuConfigSource,
    PoolState,
    build_connection_pool,
    parse_connection_string,
)
from .store import MetadataStore

__all__ = [
    "ComposedStatement",
    "StatementTemplate",
    "compose_batch",
    "IngestionConsumer",
    "parse_record",
    "ConnectionLifecycleManager",
    "HerokuConfigSource",
    "PoolState",
    "build_connection_pool",
    "parse_connection_string",
    "MetadataStore",
]
