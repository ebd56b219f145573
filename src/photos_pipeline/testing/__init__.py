"""Testing utilities and fakes for the photos pipeline."""

from .fakes import (
    TEST_CATALOG,
    TEST_DATABASE_URL,
    FakeConfigSource,
    FakeConnectionPool,
    FakeDatabase,
    FakeLogger,
    FakeS3Client,
    FakeSqsClient,
    S3Bucket,
    S3Object,
    create_test_image,
    setup_test_s3_environment,
)

__all__ = [
    "TEST_CATALOG",
    "TEST_DATABASE_URL",
    "FakeConfigSource",
    "FakeConnectionPool",
    "FakeDatabase",
    "FakeLogger",
    "FakeS3Client",
    "FakeSqsClient",
    "S3Bucket",
    "S3Object",
    "create_test_image",
    "setup_test_s3_environment",
]
