"""Tests for direct metadata deletes."""

import pytest

from photos_pipeline.ingestion.pool import ConnectionLifecycleManager
from photos_pipeline.ingestion.store import MetadataStore
from photos_pipeline.testing.fakes import FakeConfigSource, FakeConnectionPool, FakeLogger


@pytest.fixture
def pool():
    pool = FakeConnectionPool()
    for directory, name in [
        ("2021/spain/madrid/", "sunset"),
        ("2021/spain/madrid/", "plaza"),
        ("2021/spain/", "beach"),
        ("2021/a_b/", "one"),
        ("2021/axb/", "two"),
        ("2022/italy/", "rome"),
    ]:
        pool.database.rows[(directory, name)] = {"dir_path": directory, "name": name}
    return pool


@pytest.fixture
def store(pool):
    lifecycle = ConnectionLifecycleManager(FakeConfigSource(), "pg", FakeLogger(), pool_factory=pool.factory)
    return MetadataStore(lifecycle, FakeLogger())


def test_delete_image_removes_one_row(store, pool):
    assert store.delete_image("2021/spain/madrid/", "sunset") == 1
    assert ("2021/spain/madrid/", "sunset") not in pool.database.rows
    assert ("2021/spain/madrid/", "plaza") in pool.database.rows
    query, params = pool.database.statements[-1]
    assert query == "DELETE FROM photos_meta WHERE name = %s AND dir_path = %s"
    assert params == ("sunset", "2021/spain/madrid/")


def test_delete_image_of_absent_row(store):
    assert store.delete_image("2021/spain/", "missing") == 0


def test_delete_directory_removes_nested_rows(store, pool):
    assert store.delete_directory("2021/spain/") == 3
    assert sorted(pool.database.rows) == [("2021/a_b/", "one"), ("2021/axb/", "two"), ("2022/italy/", "rome")]


def test_delete_directory_escapes_like_wildcards(store, pool):
    assert store.delete_directory("2021/a_b/") == 1
    assert pool.database.statements[-1][1] == ("2021/a\\_b/%",)
    assert ("2021/axb/", "two") in pool.database.rows


def test_delete_directory_refuses_empty_prefix(store):
    with pytest.raises(ValueError):
        store.delete_directory("")
