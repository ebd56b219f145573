"""Batch consumer that turns queued single-row writes into one INSERT."""

from typing import Any, Dict, List, Optional, Sequence

from ..core.exceptions import BatchParseError, batch_error_handler
from ..core.models import BatchResult, WriteRequest
from ..core.observability import LogContext, MetricsCollector, timed_operation
from ..core.protocols import LoggerProtocol
from .composer import compose_batch
from .pool import ConnectionLifecycleManager


def parse_record(record: Dict[str, Any]) -> WriteRequest:
    """
    Decode one queue record body into a write request.

    Raises:
        BatchParseError: If the body is missing or is not a valid write request
    """
    message_id = record.get("messageId") or record.get("MessageId") or ""
    with batch_error_handler(message_id):
        body = record["body"] if "body" in record else record["Body"]
        return WriteRequest.model_validate_json(body)


class IngestionConsumer:
    """
    Consume one delivery batch with a single database round-trip.

    The batch is all-or-nothing: if any record fails to parse, nothing is
    written and the error propagates so the queue redelivers the batch.
    """

    def __init__(
        self,
        lifecycle: ConnectionLifecycleManager,
        logger: LoggerProtocol,
        metrics_collector: Optional[MetricsCollector] = None,
    ):
        self._lifecycle = lifecycle
        self._logger = logger
        self._metrics_collector = metrics_collector

    def consume(self, records: Sequence[Dict[str, Any]]) -> BatchResult:
        """
        Insert every record of a batch with one multi-row statement.

        The connection is acquired before parsing and handed back on every
        path, including a parse failure.

        Raises:
            BatchParseError: On an empty batch or any unparseable record
            DatabaseConnectionError: If no connection could be obtained
        """
        if not records:
            raise BatchParseError("Received an empty batch")

        context = LogContext(component="ingestion").with_metadata(batch_size=len(records))

        with self._lifecycle.connection() as conn:
            requests: List[WriteRequest] = [parse_record(record) for record in records]
            statement = compose_batch(requests)
            self._logger.debug(
                "Composed batch insert",
                context,
                rows=statement.row_count,
                columns=statement.template.column_count,
            )
            with timed_operation("batch_insert", self._logger, self._metrics_collector, context):
                with conn.cursor() as cursor:
                    cursor.execute(statement.psycopg_text, statement.values)
                    inserted = max(cursor.rowcount, 0)

        skipped = len(records) - inserted
        if skipped:
            self._logger.info("Some rows already existed", context, skipped=skipped)
        return BatchResult(message_count=len(records), rows_inserted=inserted, success=True)
