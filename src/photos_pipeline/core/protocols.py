"""Protocol definitions for dependency injection and testability."""

from typing import Any, Dict, List, Protocol


class S3ClientProtocol(Protocol):
    """Protocol for the S3 client operations the pipeline uses."""

    def get_object(self, Bucket: str, Key: str) -> Dict[str, Any]:
        """Get object from S3."""
        ...

    def put_object(
        self, Bucket: str, Key: str, Body: bytes, ContentType: str
    ) -> Dict[str, Any]:
        """Put object to S3."""
        ...

    def delete_objects(self, Bucket: str, Delete: Dict[str, Any]) -> Dict[str, Any]:
        """Delete up to 1000 keys in one request."""
        ...

    def list_objects_v2(self, Bucket: str, Prefix: str) -> Dict[str, Any]:
        """List one page of objects under a prefix."""
        ...


class QueueClientProtocol(Protocol):
    """Protocol for SQS client operations."""

    def send_message(self, QueueUrl: str, MessageBody: str) -> Dict[str, Any]:
        """Publish one message."""
        ...

    def receive_message(self, **kwargs: Any) -> Dict[str, Any]:
        """Receive a batch of messages."""
        ...

    def delete_message_batch(
        self, QueueUrl: str, Entries: List[Dict[str, str]]
    ) -> Dict[str, Any]:
        """Acknowledge a batch of messages."""
        ...


class ConfigSourceProtocol(Protocol):
    """Protocol for the remote source of database credentials."""

    def fetch_database_url(self, resource_id: str) -> str:
        """Return the connection string for a database resource."""
        ...


class MetadataStoreProtocol(Protocol):
    """Protocol for direct deletes against the metadata table."""

    def delete_image(self, directory: str, base_name: str) -> int:
        """Remove the row for one image; returns the affected row count."""
        ...

    def delete_directory(self, prefix: str) -> int:
        """Remove every row under a directory prefix."""
        ...


class LoggerProtocol(Protocol):
    """Protocol for logging operations."""

    def debug(self, message: str, context: Any = None, **kwargs: Any) -> None:
        """Log debug message."""
        ...

    def info(self, message: str, context: Any = None, **kwargs: Any) -> None:
        """Log info message."""
        ...

    def warning(self, message: str, context: Any = None, **kwargs: Any) -> None:
        """Log warning message."""
        ...

    def error(self, message: str, context: Any = None, **kwargs: Any) -> None:
        """Log error message."""
        ...
