"""Main module for the photos pipeline CLI."""

import argparse
import json
import sys
from typing import Any, List, Optional

from . import __version__
from .core.catalog import DEFAULT_CATALOG, DerivativeCatalog
from .core.exceptions import PhotosPipelineError
from .core.factories import PipelineFactory, S3ClientFactory, SqsClientFactory
from .core.logging_config import get_logger, set_debug_logging
from .core.models import PipelineConfig
from .core.protocols import QueueClientProtocol

logger = get_logger("cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="photos-pipeline",
        description="Photos Pipeline - derive, delete and index photo derivatives",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Derive every size and format for one uploaded photo
  photos-pipeline derive --bucket my-photos --key 2021/spain/madrid/sunset.jpg

  # Remove the derivatives of a deleted photo, or of a whole album
  photos-pipeline delete --key 2021/spain/madrid/sunset.jpg
  photos-pipeline delete --key 2021/spain/

  # Drain one batch from the metadata queue into Postgres
  photos-pipeline consume --max-messages 10
        """,
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--resized-bucket", default=None, help="Derivatives bucket (overrides RESIZED_PHOTOS_BUCKET)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    derive_parser = subparsers.add_parser("derive", help="Derive all artifacts for one source image")
    derive_parser.add_argument("--bucket", required=True, help="Source S3 bucket")
    derive_parser.add_argument("--key", required=True, help="Source S3 key")
    derive_parser.add_argument(
        "--timeout", type=float, default=None, help="Seconds allowed for the whole fan-out"
    )

    delete_parser = subparsers.add_parser("delete", help="Delete the derivatives of a source key or prefix")
    delete_parser.add_argument("--key", required=True, help="Deleted source key, or a directory prefix")

    consume_parser = subparsers.add_parser("consume", help="Insert one batch from the metadata queue")
    consume_parser.add_argument(
        "--max-messages", type=int, default=10, help="Messages to receive in one batch (1-10)"
    )
    consume_parser.add_argument(
        "--wait-seconds", type=int, default=1, help="Long-poll wait for the receive call"
    )

    subparsers.add_parser("version", help="Show version information")
    return parser


def _consume_from_queue(
    components: Any, sqs_client: QueueClientProtocol, max_messages: int, wait_seconds: int
) -> int:
    queue_url = components.config.require_queue()
    consumer = components.require_consumer()

    response = sqs_client.receive_message(
        QueueUrl=queue_url,
        MaxNumberOfMessages=max(1, min(max_messages, 10)),
        WaitTimeSeconds=wait_seconds,
    )
    messages = response.get("Messages") or []
    if not messages:
        print("No messages available")
        return 0

    records = [{"messageId": message["MessageId"], "body": message["Body"]} for message in messages]
    result = consumer.consume(records)

    # acknowledged only after the insert committed; a failure leaves them for redelivery
    response = sqs_client.delete_message_batch(
        QueueUrl=queue_url,
        Entries=[
            {"Id": str(index), "ReceiptHandle": message["ReceiptHandle"]}
            for index, message in enumerate(messages)
        ],
    )
    print(json.dumps(result.model_dump(mode="json")))

    failed = response.get("Failed") or []
    if failed:
        # the rows are in; unacknowledged messages come back and hit ON CONFLICT DO NOTHING
        ids = ", ".join(str(entry.get("Id")) for entry in failed)
        logger.error(f"Failed to acknowledge {len(failed)} of {len(messages)} messages (entries {ids})")
        return 1
    return 0


def run(
    args: argparse.Namespace,
    s3_client: Optional[Any] = None,
    sqs_client: Optional[Any] = None,
    config_source: Optional[Any] = None,
    pool_factory: Optional[Any] = None,
    catalog: DerivativeCatalog = DEFAULT_CATALOG,
) -> int:
    """Execute a parsed command; returns the process exit code."""
    if args.debug:
        set_debug_logging()

    config = PipelineConfig.from_env(resized_bucket=args.resized_bucket, debug=args.debug or None)
    s3_client = s3_client or S3ClientFactory.create_s3_client(config)
    sqs_client = sqs_client or SqsClientFactory.create_sqs_client(config)
    components = PipelineFactory.create_pipeline(
        config,
        s3_client=s3_client,
        sqs_client=sqs_client,
        config_source=config_source,
        pool_factory=pool_factory,
        catalog=catalog,
    )

    if args.command == "derive":
        config.require_queue()
        result = components.created.handle(args.bucket, args.key, timeout=args.timeout)
        print(json.dumps(result.model_dump(mode="json")))
        return 0

    if args.command == "delete":
        deletion = components.deleted.handle(args.key)
        print(json.dumps(deletion.model_dump(mode="json")))
        return 0

    if args.command == "consume":
        return _consume_from_queue(components, sqs_client, args.max_messages, args.wait_seconds)

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the ``photos-pipeline`` command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "version":
        print("Photos Pipeline CLI")
        print(f"Version {__version__}")
        sys.exit(0)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        code = run(args)
    except PhotosPipelineError as exc:
        logger.error(f"{args.command} failed: {exc}")
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
