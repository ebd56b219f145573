"""Factory classes for creating configured service instances."""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import boto3
from botocore.config import Config

from .catalog import DEFAULT_CATALOG, DerivativeCatalog
from .exceptions import ConfigurationError
from .models import PipelineConfig
from .observability import MetricsCollector, StructuredLogger
from .protocols import ConfigSourceProtocol, LoggerProtocol, QueueClientProtocol, S3ClientProtocol
from .services import (
    DeletionMirror,
    DerivativeFanOutEngine,
    ImageCreatedHandler,
    ImageDeletedHandler,
    MetadataQueuePublisher,
    UploadCompensator,
)


class LoggerFactory:
    """Factory for creating logger instances."""

    @staticmethod
    def create_logger(name: str, level: Optional[int] = None) -> LoggerProtocol:
        """Create a structured logger nested under the pipeline's root logger."""
        return StructuredLogger(name, level)


class S3ClientFactory:
    """Factory for creating S3 client instances."""

    @staticmethod
    def create_s3_client(config: Optional[PipelineConfig] = None, **kwargs: Any) -> S3ClientProtocol:
        """Create S3 client, bounded by the pipeline's client timeouts when a config is given."""
        if config is not None:
            kwargs.setdefault("config", client_config(config))
        session = boto3.Session()
        return session.client("s3", **kwargs)  # type: ignore


class SqsClientFactory:
    """Factory for creating SQS client instances."""

    @staticmethod
    def create_sqs_client(config: Optional[PipelineConfig] = None, **kwargs: Any) -> QueueClientProtocol:
        if config is not None:
            kwargs.setdefault("config", client_config(config))
        session = boto3.Session()
        return session.client("sqs", **kwargs)  # type: ignore


def client_config(config: PipelineConfig) -> Config:
    """
    botocore settings shared by the S3 and SQS clients.

    A stalled call blocks the fan-out join for at most
    ``config.client_stall_bound`` seconds, and every fan-out worker gets its
    own pooled HTTP connection.
    """
    return Config(
        connect_timeout=config.client_connect_timeout,
        read_timeout=config.client_read_timeout,
        retries={"total_max_attempts": config.client_max_attempts, "mode": "standard"},
        max_pool_connections=config.max_workers,
    )


@dataclass
class PipelineComponents:
    """Everything one process needs to serve creation, deletion and ingestion events."""

    config: PipelineConfig
    created: ImageCreatedHandler
    deleted: ImageDeletedHandler
    consumer: Optional[Any]
    metrics: MetricsCollector

    def require_consumer(self) -> Any:
        if self.consumer is None:
            raise ConfigurationError("HEROKU_API_KEY and HEROKU_POSTGRES_ID must be set")
        return self.consumer


class PipelineFactory:
    """Factory for wiring the complete pipeline from a config."""

    @staticmethod
    def create_pipeline(
        config: PipelineConfig,
        s3_client: Optional[S3ClientProtocol] = None,
        sqs_client: Optional[QueueClientProtocol] = None,
        config_source: Optional[ConfigSourceProtocol] = None,
        pool_factory: Optional[Any] = None,
        logger: Optional[LoggerProtocol] = None,
        catalog: DerivativeCatalog = DEFAULT_CATALOG,
    ) -> PipelineComponents:
        """
        Create a fully configured pipeline.

        The database side (row deletes and the ingestion consumer) is only
        wired when Heroku credentials are configured.
        """
        # ingestion imports core, so it is imported here rather than at module level
        from ..ingestion import ConnectionLifecycleManager, HerokuConfigSource, IngestionConsumer, MetadataStore

        if s3_client is None:
            s3_client = S3ClientFactory.create_s3_client(config)
        if sqs_client is None:
            sqs_client = SqsClientFactory.create_sqs_client(config)
        if logger is None:
            logger = LoggerFactory.create_logger("pipeline", logging.DEBUG if config.debug else None)

        metrics = MetricsCollector()

        engine = DerivativeFanOutEngine(
            s3_client,
            catalog,
            config.resized_bucket,
            logger,
            max_workers=config.max_workers,
            metrics_collector=metrics,
        )
        compensator = UploadCompensator(s3_client, catalog, config.resized_bucket, logger, metrics_collector=metrics)
        publisher = MetadataQueuePublisher(sqs_client, config.metadata_queue_url, logger)
        created = ImageCreatedHandler(s3_client, engine, compensator, publisher, logger)

        metadata_store = None
        consumer = None
        if config.heroku_postgres_id and (config.heroku_api_key or config_source is not None):
            if config_source is None:
                config_source = HerokuConfigSource(
                    config.heroku_api_key,
                    api_url=config.heroku_api_url,
                    timeout=config.pool_connect_timeout,
                )
            lifecycle = ConnectionLifecycleManager(
                config_source,
                config.heroku_postgres_id,
                logger,
                pool_factory=pool_factory,
                max_idle=config.pool_max_idle,
                connect_timeout=config.pool_connect_timeout,
            )
            metadata_store = MetadataStore(lifecycle, logger)
            consumer = IngestionConsumer(lifecycle, logger, metrics_collector=metrics)
        else:
            logger.warning("Database credentials not configured; metadata rows will not be deleted")

        mirror = DeletionMirror(s3_client, catalog, config.resized_bucket, logger)
        deleted = ImageDeletedHandler(mirror, metadata_store, logger)

        return PipelineComponents(
            config=config,
            created=created,
            deleted=deleted,
            consumer=consumer,
            metrics=metrics,
        )
