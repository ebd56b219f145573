"""Derivative fan-out, compensation and deletion services."""

import time
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from PIL import Image

from .catalog import DerivativeCatalog, DerivativeSpec
from .error_handling import retry_s3_operation, with_error_handling
from .exceptions import (
    CompensationError,
    DerivationError,
    HierarchyError,
    S3Error,
    UnsupportedFormatError,
)
from .image_utils import decode_image, describe_image, encode_image, normalize_orientation, resize_to_width
from .metadata import build_insert_request
from .models import (
    DeletionResult,
    DerivationResult,
    DerivationStatus,
    MetadataRecord,
    PathIdentity,
    SourceImageRef,
    WriteRequest,
)
from .observability import LogContext, MetricsCollector, timed_operation
from .paths import decode_key, ensure_supported_format, is_directory_key, parse_key
from .protocols import LoggerProtocol, MetadataStoreProtocol, QueueClientProtocol, S3ClientProtocol

ALT_TEXT_METADATA_KEY = "alt"


@retry_s3_operation()
@with_error_handling
def _download_source(s3_client: S3ClientProtocol, bucket: str, key: str) -> Tuple[bytes, Dict[str, str]]:
    response = s3_client.get_object(Bucket=bucket, Key=key)
    return response["Body"].read(), response.get("Metadata") or {}


@retry_s3_operation()
@with_error_handling
def _upload_artifact(s3_client: S3ClientProtocol, bucket: str, key: str, body: bytes, content_type: str) -> None:
    s3_client.put_object(Bucket=bucket, Key=key, Body=body, ContentType=content_type)


@retry_s3_operation()
@with_error_handling
def _delete_keys(s3_client: S3ClientProtocol, bucket: str, keys: Sequence[str]) -> int:
    """Bulk delete; absent keys are a no-op on S3, per-key failures are not."""
    response = s3_client.delete_objects(
        Bucket=bucket,
        Delete={"Objects": [{"Key": key} for key in keys], "Quiet": True},
    )
    errors = response.get("Errors") or []
    if errors:
        first = errors[0]
        raise S3Error(
            f"{len(errors)} of {len(keys)} deletes failed in s3://{bucket}, "
            f"first: {first.get('Key')} ({first.get('Code')}: {first.get('Message')})"
        )
    return len(keys)


@retry_s3_operation()
@with_error_handling
def _list_page(s3_client: S3ClientProtocol, bucket: str, prefix: str) -> Dict[str, Any]:
    return s3_client.list_objects_v2(Bucket=bucket, Prefix=prefix)


@dataclass(frozen=True)
class UploadDescriptor:
    """One pending artifact write: which spec, and where it lands."""

    spec: DerivativeSpec
    key: str


@dataclass
class FanOutOutcome:
    """What a successful fan-out produced."""

    width: int
    height: int
    artifact_keys: List[str]


def _remaining(deadline: Optional[float]) -> Optional[float]:
    if deadline is None:
        return None
    return max(0.0, deadline - time.monotonic())


class DerivativeFanOutEngine:
    """Decode once, resize per size, encode per format, upload everything or fail."""

    def __init__(
        self,
        s3_client: S3ClientProtocol,
        catalog: DerivativeCatalog,
        dest_bucket: str,
        logger: LoggerProtocol,
        max_workers: Optional[int] = None,
        metrics_collector: Optional[MetricsCollector] = None,
    ):
        self._s3_client = s3_client
        self._catalog = catalog
        self._dest_bucket = dest_bucket
        self._logger = logger
        self._max_workers = max_workers or len(catalog)
        self._metrics_collector = metrics_collector

    @property
    def catalog(self) -> DerivativeCatalog:
        return self._catalog

    def pending_uploads(self, identity: PathIdentity) -> List[UploadDescriptor]:
        """The full list of writes one source image requires."""
        return [UploadDescriptor(spec=spec, key=spec.key_for(identity)) for spec in self._catalog.specs()]

    def derive(
        self,
        source: SourceImageRef,
        identity: PathIdentity,
        timeout: Optional[float] = None,
        context: Optional[LogContext] = None,
    ) -> FanOutOutcome:
        """
        Produce and upload every artifact in the catalog for one source image.

        Args:
            source: Source image bytes and key
            identity: Parsed identity of the source key
            timeout: Seconds allowed for the whole fan-out; expiry fails the image
            context: Log context carrying the invocation's correlation id

        Returns:
            FanOutOutcome with the normalized base dimensions and artifact keys

        Raises:
            DerivationError: If any resize, encode or upload fails, or the
                timeout expires. Raised only after every started task finished.
        """
        context = context or LogContext(component="fanout").with_metadata(key=source.key)
        deadline = time.monotonic() + timeout if timeout is not None else None

        with timed_operation("decode", self._logger, self._metrics_collector, context):
            decoded = decode_image(source.body)
            self._logger.debug("Decoded source image", context, **describe_image(decoded))
            base = normalize_orientation(decoded)
        width, height = base.size

        pending = self.pending_uploads(identity)
        workers = max(1, min(self._max_workers, len(pending)))

        with timed_operation("fan_out", self._logger, self._metrics_collector, context):
            executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fanout")
            try:
                resized = self._resize_all(executor, base, deadline, source.key)
                futures = {
                    executor.submit(self._encode_and_upload, resized[item.spec.size.label], item, context): item
                    for item in pending
                }
                self._join(futures, deadline, source.key)
            finally:
                executor.shutdown(wait=True, cancel_futures=True)

        return FanOutOutcome(width=width, height=height, artifact_keys=[item.key for item in pending])

    def _resize_all(
        self,
        executor: ThreadPoolExecutor,
        base: "Image.Image",
        deadline: Optional[float],
        source_key: str,
    ) -> Dict[str, "Image.Image"]:
        # each size branches from the normalized base, never from a smaller derivative
        futures = {
            executor.submit(resize_to_width, base, size.width): size.label for size in self._catalog.sizes
        }
        self._join(futures, deadline, source_key)
        return {label: future.result() for future, label in futures.items()}

    def _encode_and_upload(self, image: "Image.Image", item: UploadDescriptor, context: LogContext) -> str:
        body = encode_image(image, item.spec.encoding)
        _upload_artifact(
            self._s3_client, self._dest_bucket, item.key, body, item.spec.encoding.content_type
        )
        self._logger.debug("Uploaded artifact", context, artifact=item.key, bytes=len(body))
        return item.key

    def _join(self, futures: Dict[Future, Any], deadline: Optional[float], source_key: str) -> None:
        done, not_done = wait(futures, timeout=_remaining(deadline), return_when=FIRST_EXCEPTION)
        for future in not_done:
            future.cancel()

        failures = [
            (futures[future], future.exception())
            for future in done
            if not future.cancelled() and future.exception() is not None
        ]
        if failures:
            label, exc = failures[0]
            raise DerivationError(
                f"Derivation of {source_key} failed at {_describe(label)}: {exc}", key=source_key
            ) from exc
        if not_done:
            raise DerivationError(
                f"Derivation of {source_key} timed out with {len(not_done)} branch(es) unfinished",
                key=source_key,
            )


def _describe(item: Any) -> str:
    if isinstance(item, UploadDescriptor):
        return item.key
    return f"resize '{item}'"


class UploadCompensator:
    """Remove every artifact a failed derivation may have written."""

    def __init__(
        self,
        s3_client: S3ClientProtocol,
        catalog: DerivativeCatalog,
        dest_bucket: str,
        logger: LoggerProtocol,
        metrics_collector: Optional[MetricsCollector] = None,
    ):
        self._s3_client = s3_client
        self._catalog = catalog
        self._dest_bucket = dest_bucket
        self._logger = logger
        self._metrics_collector = metrics_collector

    def compensate(
        self,
        identity: PathIdentity,
        error: DerivationError,
        context: Optional[LogContext] = None,
    ) -> None:
        """
        Delete the full catalog key set for an image.

        The whole set is deleted rather than the subset known to have
        succeeded; deleting an absent key is a no-op.

        Raises:
            CompensationError: If the cleanup fails. ``original`` holds ``error``.
        """
        context = (context or LogContext(component="compensator")).with_operation("compensate")
        keys = self._catalog.artifact_keys(identity)
        self._logger.warning("Removing partial derivatives", context, keys=len(keys), cause=str(error))
        try:
            with timed_operation("compensate", self._logger, self._metrics_collector, context):
                _delete_keys(self._s3_client, self._dest_bucket, keys)
        except Exception as cleanup_exc:
            self._logger.error("Compensation failed", context, error=str(cleanup_exc))
            raise CompensationError(
                f"Could not remove partial derivatives of {identity.directory}{identity.base_name}",
                original=error,
            ) from cleanup_exc
        self._logger.info("Partial derivatives removed", context, keys=len(keys))


class DeletionMirror:
    """Mirror source deletions onto the derivatives bucket."""

    def __init__(
        self,
        s3_client: S3ClientProtocol,
        catalog: DerivativeCatalog,
        dest_bucket: str,
        logger: LoggerProtocol,
    ):
        self._s3_client = s3_client
        self._catalog = catalog
        self._dest_bucket = dest_bucket
        self._logger = logger

    def delete_derivatives(self, identity: PathIdentity) -> List[str]:
        """Delete exactly the catalog key set for one image in one bulk request."""
        keys = self._catalog.artifact_keys(identity)
        _delete_keys(self._s3_client, self._dest_bucket, keys)
        self._logger.info(
            f"Deleted {len(keys)} derivatives of {identity.directory}{identity.base_name}"
        )
        return keys

    def delete_prefix(self, prefix: str) -> Tuple[int, int]:
        """
        Delete everything under a directory prefix.

        Lists a page, deletes it, and lists the same prefix again for as long
        as the listing reports truncation.

        Returns:
            Tuple of (pages processed, keys deleted)
        """
        if not prefix:
            raise ValueError("Refusing to delete an empty prefix")

        pages = 0
        deleted = 0
        while True:
            listing = _list_page(self._s3_client, self._dest_bucket, prefix)
            keys = [obj["Key"] for obj in listing.get("Contents") or []]
            if not keys:
                break

            _delete_keys(self._s3_client, self._dest_bucket, keys)
            pages += 1
            deleted += len(keys)
            self._logger.debug(f"Deleted page {pages} under {prefix} ({len(keys)} keys)")

            if not listing.get("IsTruncated"):
                break

        self._logger.info(f"Deleted {deleted} objects under s3://{self._dest_bucket}/{prefix} in {pages} page(s)")
        return pages, deleted


class MetadataQueuePublisher:
    """Publish single-row write requests onto the metadata queue."""

    def __init__(self, sqs_client: QueueClientProtocol, queue_url: str, logger: LoggerProtocol):
        self._sqs_client = sqs_client
        self._queue_url = queue_url
        self._logger = logger

    def publish(self, request: WriteRequest) -> str:
        response = self._sqs_client.send_message(
            QueueUrl=self._queue_url, MessageBody=request.model_dump_json()
        )
        message_id = response.get("MessageId", "")
        self._logger.debug(f"Queued metadata write {message_id}")
        return message_id


class ImageCreatedHandler:
    """Handle one object-created event end to end."""

    def __init__(
        self,
        s3_client: S3ClientProtocol,
        engine: DerivativeFanOutEngine,
        compensator: UploadCompensator,
        publisher: MetadataQueuePublisher,
        logger: LoggerProtocol,
    ):
        self._s3_client = s3_client
        self._engine = engine
        self._compensator = compensator
        self._publisher = publisher
        self._logger = logger

    def handle(self, bucket: str, raw_key: str, timeout: Optional[float] = None) -> DerivationResult:
        """
        Derive all artifacts for a new source image and queue its metadata row.

        Hierarchy violations and unsupported formats are logged and skipped.

        Raises:
            DerivationError: If derivation failed and the cleanup succeeded
            CompensationError: If derivation failed and the cleanup also failed
        """
        start_time = time.time()
        key = decode_key(raw_key)
        result = DerivationResult(source_key=key)
        context = LogContext(component="image_created").with_metadata(bucket=bucket, key=key)

        try:
            ensure_supported_format(key)
            identity = parse_key(key)
        except UnsupportedFormatError as exc:
            self._logger.info(f"Skipping: {exc}", context)
            return self._finish(result, DerivationStatus.SKIPPED, start_time, str(exc))
        except HierarchyError as exc:
            self._logger.warning(f"Dropping: {exc}", context)
            return self._finish(result, DerivationStatus.SKIPPED, start_time, str(exc))

        source = self._fetch_source(bucket, key)

        try:
            outcome = self._engine.derive(source, identity, timeout=timeout, context=context)
            self._enqueue_metadata(identity, source, outcome)
        except DerivationError as exc:
            self._logger.error("Derivation failed, compensating", context, error=str(exc))
            self._compensator.compensate(identity, exc, context)
            raise

        result.artifact_keys = outcome.artifact_keys
        result.width = outcome.width
        result.height = outcome.height
        self._finish(result, DerivationStatus.DERIVED, start_time)
        self._logger.info(
            "Derived image",
            context,
            artifacts=len(outcome.artifact_keys),
            processing_time_ms=round(result.processing_time * 1000, 1),
        )
        return result

    def _fetch_source(self, bucket: str, key: str) -> SourceImageRef:
        try:
            body, metadata = _download_source(self._s3_client, bucket, key)
        except Exception as exc:
            raise DerivationError(f"Could not download s3://{bucket}/{key}: {exc}", key=key) from exc
        return SourceImageRef(
            bucket=bucket, key=key, body=body, alt_text=metadata.get(ALT_TEXT_METADATA_KEY)
        )

    def _enqueue_metadata(self, identity: PathIdentity, source: SourceImageRef, outcome: FanOutOutcome) -> None:
        record = MetadataRecord(
            directory=identity.directory,
            base_name=identity.base_name,
            year=identity.year,
            album=identity.album,
            sub_album=identity.sub_album,
            width=outcome.width,
            height=outcome.height,
            alt_text=source.alt_text,
            formats=self._engine.catalog.encoding_names,
        )
        try:
            self._publisher.publish(build_insert_request(record))
        except Exception as exc:
            # without a queued row the artifacts would never be indexed
            raise DerivationError(f"Could not queue metadata for {source.key}: {exc}", key=source.key) from exc

    @staticmethod
    def _finish(
        result: DerivationResult, status: DerivationStatus, start_time: float, error: str = ""
    ) -> DerivationResult:
        result.status = status
        result.error = error
        result.processing_time = time.time() - start_time
        return result


class ImageDeletedHandler:
    """Handle one object-deleted event: storage first, then the metadata row."""

    def __init__(
        self,
        mirror: DeletionMirror,
        metadata_store: Optional[MetadataStoreProtocol],
        logger: LoggerProtocol,
    ):
        self._mirror = mirror
        self._metadata_store = metadata_store
        self._logger = logger

    def handle(self, raw_key: str) -> DeletionResult:
        """
        Remove the derivatives (and metadata) of a deleted source key.

        Both deletes are attempted even when the other fails; the first
        failure is re-raised afterwards so the event can be redelivered.
        """
        key = decode_key(raw_key)
        result = DeletionResult(source_key=key)
        context = LogContext(component="image_deleted").with_metadata(key=key)
        failures: List[Exception] = []

        if is_directory_key(key):
            self._logger.info("Key has no extension, deleting as a directory", context)
            result.prefix_delete = True
            try:
                result.pages, result.deleted_keys = self._mirror.delete_prefix(key)
            except Exception as exc:
                self._logger.error("Prefix delete failed", context, error=str(exc))
                failures.append(exc)
            self._delete_metadata(result, failures, context, prefix=key)
        else:
            try:
                ensure_supported_format(key)
                identity = parse_key(key)
            except (UnsupportedFormatError, HierarchyError) as exc:
                self._logger.warning(f"Dropping: {exc}", context)
                result.skipped = True
                return result

            try:
                result.deleted_keys = len(self._mirror.delete_derivatives(identity))
            except Exception as exc:
                self._logger.error("Derivative delete failed", context, error=str(exc))
                failures.append(exc)
            self._delete_metadata(result, failures, context, identity=identity)

        if failures:
            raise failures[0]
        return result

    def _delete_metadata(
        self,
        result: DeletionResult,
        failures: List[Exception],
        context: LogContext,
        identity: Optional[PathIdentity] = None,
        prefix: Optional[str] = None,
    ) -> None:
        if self._metadata_store is None:
            self._logger.debug("No metadata store configured, skipping row delete", context)
            return
        try:
            if identity is not None:
                rows = self._metadata_store.delete_image(identity.directory, identity.base_name)
            else:
                rows = self._metadata_store.delete_directory(prefix or "")
        except Exception as exc:
            self._logger.error("Metadata delete failed", context, error=str(exc))
            failures.append(exc)
            return
        result.metadata_deleted = True
        self._logger.info("Deleted metadata rows", context, rows=rows)
