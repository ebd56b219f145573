"""Integration tests for the complete pipeline."""

import pytest

from photos_pipeline.core.factories import PipelineFactory
from photos_pipeline.core.models import DerivationStatus, PipelineConfig
from photos_pipeline.ingestion import PoolState
from photos_pipeline.testing.fakes import (
    TEST_CATALOG,
    FakeConfigSource,
    FakeConnectionPool,
    FakeLogger,
    FakeSqsClient,
    setup_test_s3_environment,
)

QUEUE_URL = "https://sqs.example.com/123/image-meta"


@pytest.fixture
def environment():
    s3 = setup_test_s3_environment()
    sqs = FakeSqsClient()
    pool = FakeConnectionPool()
    config = PipelineConfig(
        resized_bucket="test-resized",
        metadata_queue_url=QUEUE_URL,
        heroku_api_key="key",
        heroku_postgres_id="pg-addon-1",
    )
    components = PipelineFactory.create_pipeline(
        config,
        s3_client=s3,
        sqs_client=sqs,
        config_source=FakeConfigSource(),
        pool_factory=pool.factory,
        logger=FakeLogger(),
        catalog=TEST_CATALOG,
    )
    return s3, sqs, pool, components


def drain(sqs, components):
    messages = sqs.messages(QUEUE_URL)
    records = [{"messageId": m["MessageId"], "body": m["Body"]} for m in messages]
    result = components.consumer.consume(records)
    sqs.delete_message_batch(
        QueueUrl=QUEUE_URL,
        Entries=[{"Id": str(i), "ReceiptHandle": m["ReceiptHandle"]} for i, m in enumerate(messages)],
    )
    return result


class TestPipelineIntegration:
    """Integration tests for upload, index and delete."""

    def test_upload_index_and_delete_round_trip(self, environment):
        s3, sqs, pool, components = environment
        resized = s3.get_bucket("test-resized")

        created = components.created.handle("test-photos", "2021/spain/madrid/sunset.jpg")
        beach = components.created.handle("test-photos", "2021/spain/beach.png")
        assert created.status == DerivationStatus.DERIVED
        assert beach.status == DerivationStatus.DERIVED
        assert len(resized.list_keys()) == 2 * len(TEST_CATALOG)

        batch = drain(sqs, components)
        assert batch.rows_inserted == 2
        assert sqs.messages(QUEUE_URL) == []
        row = pool.database.rows[("2021/spain/madrid/", "sunset")]
        assert row["alt_text"] == "Sunset over Madrid"
        assert row["sub_album"] == "madrid"
        assert pool.database.rows[("2021/spain/", "beach")]["sub_album"] is None

        deleted = components.deleted.handle("2021/spain/madrid/sunset.jpg")
        assert deleted.metadata_deleted
        assert all(not key.startswith("2021/spain/madrid/sunset_") for key in resized.list_keys())
        assert ("2021/spain/madrid/", "sunset") not in pool.database.rows
        assert ("2021/spain/", "beach") in pool.database.rows

    def test_album_delete_clears_storage_and_rows(self, environment):
        s3, sqs, pool, components = environment
        components.created.handle("test-photos", "2021/spain/madrid/sunset.jpg")
        components.created.handle("test-photos", "2021/spain/beach.png")
        drain(sqs, components)

        result = components.deleted.handle("2021/spain/")

        assert result.prefix_delete
        assert result.deleted_keys == 2 * len(TEST_CATALOG)
        assert s3.get_bucket("test-resized").list_keys() == []
        assert pool.database.rows == {}

    def test_redelivered_batch_does_not_duplicate_rows(self, environment):
        s3, sqs, pool, components = environment
        components.created.handle("test-photos", "2021/spain/madrid/sunset.jpg")
        records = [{"messageId": m["MessageId"], "body": m["Body"]} for m in sqs.messages(QUEUE_URL)]

        assert components.consumer.consume(records).rows_inserted == 1
        assert components.consumer.consume(records).rows_inserted == 0
        assert len(pool.database.rows) == 1

    def test_pool_is_shared_between_consumer_and_deletes(self, environment):
        s3, sqs, pool, components = environment
        components.created.handle("test-photos", "2021/spain/madrid/sunset.jpg")
        drain(sqs, components)
        components.deleted.handle("2021/spain/madrid/sunset.jpg")

        assert len(pool.created_with) == 1
        assert components.consumer._lifecycle.state is PoolState.READY

    def test_stage_metrics_are_collected(self, environment):
        s3, sqs, pool, components = environment
        components.created.handle("test-photos", "2021/spain/madrid/sunset.jpg")

        assert components.metrics.get_summary("decode")["total_operations"] == 1
        assert components.metrics.get_summary("fan_out")["successful_operations"] == 1


def test_without_database_credentials_only_storage_is_wired():
    s3 = setup_test_s3_environment()
    logger = FakeLogger()
    components = PipelineFactory.create_pipeline(
        PipelineConfig(resized_bucket="test-resized", metadata_queue_url=QUEUE_URL),
        s3_client=s3,
        sqs_client=FakeSqsClient(),
        logger=logger,
        catalog=TEST_CATALOG,
    )

    assert components.consumer is None
    assert logger.get_logs("WARNING")
    result = components.deleted.handle("2021/spain/madrid/sunset.jpg")
    assert not result.metadata_deleted
