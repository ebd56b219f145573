"""AWS Lambda entry points.

Components are built once per process and reused by warm invocations, so
the database pool and the boto3 clients survive between events.
"""

from functools import lru_cache
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .core.factories import PipelineComponents, PipelineFactory
from .core.logging_config import get_logger
from .core.models import PipelineConfig

logger = get_logger("handlers")


@lru_cache(maxsize=1)
def get_components() -> PipelineComponents:
    """Process-scoped pipeline, built from the environment on first use."""
    config = PipelineConfig.from_env()
    logger.info(f"Initializing pipeline for bucket {config.resized_bucket}")
    return PipelineFactory.create_pipeline(config)


def s3_records(event: Dict[str, Any]) -> Iterator[Tuple[str, str]]:
    """Yield (bucket, raw key) for every S3 record of a notification event."""
    for record in event.get("Records") or []:
        s3 = record.get("s3") or {}
        bucket = (s3.get("bucket") or {}).get("name", "")
        key = (s3.get("object") or {}).get("key", "")
        if not key:
            logger.warning(f"Ignoring S3 record without an object key: {record.get('eventName')}")
            continue
        yield bucket, key


def invocation_timeout(config: PipelineConfig, context: Any) -> Optional[float]:
    """
    Seconds the fan-out may run in this invocation.

    The invocation's remaining time, less the time an already started AWS
    call may still block and a reserve for compensation, capped by the
    configured derive timeout.
    """
    limits: List[float] = []
    if config.derive_timeout is not None:
        limits.append(config.derive_timeout)
    remaining = getattr(context, "get_remaining_time_in_millis", None)
    if callable(remaining):
        limits.append(max(remaining() / 1000.0 - config.client_stall_bound - config.timeout_reserve, 0.0))
    return min(limits) if limits else None


def object_created(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    """Derive artifacts for every created object in the event."""
    components = get_components()
    timeout = invocation_timeout(components.config, context)
    results = []
    failures: List[Exception] = []
    for bucket, key in s3_records(event):
        try:
            results.append(components.created.handle(bucket, key, timeout=timeout))
        except Exception as exc:
            logger.error(f"Failed to derive {key}: {exc}")
            failures.append(exc)
    if failures:
        raise failures[0]
    return {"results": [result.model_dump(mode="json") for result in results]}


def object_deleted(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    """Mirror every deleted object in the event onto the derivatives bucket."""
    components = get_components()
    results = []
    failures: List[Exception] = []
    for _, key in s3_records(event):
        try:
            results.append(components.deleted.handle(key))
        except Exception as exc:
            logger.error(f"Failed to delete derivatives of {key}: {exc}")
            failures.append(exc)
    if failures:
        raise failures[0]
    return {"results": [result.model_dump(mode="json") for result in results]}


def metadata_batch(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    """Insert one queue delivery batch of metadata rows."""
    components = get_components()
    result = components.require_consumer().consume(event.get("Records") or [])
    return result.model_dump(mode="json")
