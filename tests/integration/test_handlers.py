"""Integration tests for the Lambda entry points."""

from unittest.mock import patch

import pytest

from photos_pipeline import handlers
from photos_pipeline.core.exceptions import ConfigurationError, DerivationError
from photos_pipeline.core.factories import PipelineFactory
from photos_pipeline.core.models import PipelineConfig
from photos_pipeline.testing.fakes import (
    TEST_CATALOG,
    FakeConfigSource,
    FakeConnectionPool,
    FakeLogger,
    FakeSqsClient,
    setup_test_s3_environment,
)

QUEUE_URL = "https://sqs.example.com/123/image-meta"


class LambdaContext:
    def __init__(self, remaining_ms):
        self.remaining_ms = remaining_ms

    def get_remaining_time_in_millis(self):
        return self.remaining_ms


def s3_event(*keys, bucket="test-photos"):
    return {
        "Records": [
            {"eventName": "ObjectCreated:Put", "s3": {"bucket": {"name": bucket}, "object": {"key": key}}}
            for key in keys
        ]
    }


@pytest.fixture
def environment():
    s3 = setup_test_s3_environment()
    sqs = FakeSqsClient()
    pool = FakeConnectionPool()
    components = PipelineFactory.create_pipeline(
        PipelineConfig(
            resized_bucket="test-resized",
            metadata_queue_url=QUEUE_URL,
            heroku_postgres_id="pg-addon-1",
        ),
        s3_client=s3,
        sqs_client=sqs,
        config_source=FakeConfigSource(),
        pool_factory=pool.factory,
        logger=FakeLogger(),
        catalog=TEST_CATALOG,
    )
    with patch.object(handlers, "get_components", return_value=components):
        yield s3, sqs, pool, components


class TestInvocationTimeout:
    """Tests for invocation_timeout."""

    def test_remaining_time_minus_stall_bound_and_reserve(self):
        config = PipelineConfig(
            resized_bucket="b",
            timeout_reserve=5,
            client_connect_timeout=1,
            client_read_timeout=4,
            client_max_attempts=1,
        )
        assert handlers.invocation_timeout(config, LambdaContext(30000)) == 20.0

    def test_default_client_settings_leave_room_for_a_stalled_call(self):
        config = PipelineConfig(resized_bucket="b")
        assert config.client_stall_bound == 14.0
        assert handlers.invocation_timeout(config, LambdaContext(60000)) == 41.0

    def test_configured_timeout_caps_remaining_time(self):
        config = PipelineConfig(resized_bucket="b", derive_timeout=10)
        assert handlers.invocation_timeout(config, LambdaContext(30000)) == 10.0

    def test_never_negative(self):
        config = PipelineConfig(resized_bucket="b", timeout_reserve=5)
        assert handlers.invocation_timeout(config, LambdaContext(1000)) == 0.0

    def test_no_limit_without_context(self):
        assert handlers.invocation_timeout(PipelineConfig(resized_bucket="b"), None) is None


class TestHandlers:
    """Tests for the Lambda entry points."""

    def test_object_created_handles_every_record(self, environment):
        s3, sqs, pool, components = environment

        response = handlers.object_created(
            s3_event("2021/spain/madrid/sunset.jpg", "2021/spain/beach.png"), LambdaContext(60000)
        )

        assert [r["status"] for r in response["results"]] == ["derived", "derived"]
        assert len(sqs.messages(QUEUE_URL)) == 2

    def test_object_created_skips_unsupported_keys(self, environment):
        response = handlers.object_created(s3_event("2021/spain/notes.txt"))
        assert response["results"][0]["status"] == "skipped"

    def test_object_created_raises_after_processing_remaining_records(self, environment):
        s3, sqs, pool, components = environment

        with pytest.raises(DerivationError):
            handlers.object_created(s3_event("2021/spain/missing.jpg", "2021/spain/beach.png"))

        assert len(sqs.messages(QUEUE_URL)) == 1

    def test_object_deleted(self, environment):
        s3, sqs, pool, components = environment
        handlers.object_created(s3_event("2021/spain/madrid/sunset.jpg"))

        response = handlers.object_deleted(s3_event("2021/spain/madrid/sunset.jpg"))

        assert response["results"][0]["deleted_keys"] == len(TEST_CATALOG)
        assert s3.get_bucket("test-resized").list_keys() == []

    def test_metadata_batch(self, environment):
        s3, sqs, pool, components = environment
        handlers.object_created(s3_event("2021/spain/madrid/sunset.jpg"))
        event = {
            "Records": [
                {"messageId": m["MessageId"], "body": m["Body"]} for m in sqs.messages(QUEUE_URL)
            ]
        }

        response = handlers.metadata_batch(event)

        assert response == {"message_count": 1, "rows_inserted": 1, "success": True}
        assert ("2021/spain/madrid/", "sunset") in pool.database.rows

    def test_records_without_keys_are_ignored(self, environment):
        response = handlers.object_deleted({"Records": [{"eventName": "ObjectRemoved:Delete", "s3": {}}]})
        assert response == {"results": []}


def test_metadata_batch_requires_database_configuration():
    components = PipelineFactory.create_pipeline(
        PipelineConfig(resized_bucket="test-resized"),
        s3_client=setup_test_s3_environment(),
        sqs_client=FakeSqsClient(),
        logger=FakeLogger(),
        catalog=TEST_CATALOG,
    )
    with patch.object(handlers, "get_components", return_value=components):
        with pytest.raises(ConfigurationError):
            handlers.metadata_batch({"Records": [{"messageId": "m", "body": "{}"}]})


def test_components_are_built_once_per_process():
    handlers.get_components.cache_clear()
    environ = {"RESIZED_PHOTOS_BUCKET": "test-resized"}
    try:
        with patch.dict("os.environ", environ, clear=True), patch.object(
            handlers.PipelineFactory, "create_pipeline"
        ) as mock_create:
            first = handlers.get_components()
            second = handlers.get_components()
        assert first is second
        mock_create.assert_called_once()
        assert mock_create.call_args[0][0].resized_bucket == "test-resized"
    finally:
        handlers.get_components.cache_clear()
