"""
Unit tests for exercise sources.
"""

import json

import httpx
import pytest
import pytest_asyncio
from httpx import Request, Response

from cql_clinic.config import Settings
from cql_clinic.exercises.errors import LoadError
from cql_clinic.exercises.sources import (
    BundledExerciseSource,
    DirectoryExerciseSource,
    HttpExerciseSource,
    StaticExerciseSource,
    create_source,
)


@pytest_asyncio.fixture
async def http_source():
    """HTTP source instance."""
    source = HttpExerciseSource("http://localhost:3001/api/", timeout_seconds=5)
    yield source
    await source.close()


class TestStaticExerciseSource:
    """Tests for the in-memory source."""

    @pytest.mark.asyncio
    async def test_fetch_returns_copies_and_counts(self, exercise_factory):
        source = StaticExerciseSource([exercise_factory("a")])

        records = await source.fetch()
        records[0]["id"] = "mutated"

        assert (await source.fetch())[0]["id"] == "a"
        assert source.fetch_count == 2


class TestDirectoryExerciseSource:
    """Tests for the JSON directory source."""

    @pytest.mark.asyncio
    async def test_reads_lists_and_single_records(self, tmp_path, exercise_factory):
        (tmp_path / "b.json").write_text(json.dumps(exercise_factory("single")))
        (tmp_path / "a.json").write_text(json.dumps([exercise_factory("one"), exercise_factory("two")]))
        (tmp_path / "notes.txt").write_text("ignored")

        records = await DirectoryExerciseSource(tmp_path).fetch()

        assert [r["id"] for r in records] == ["one", "two", "single"]

    @pytest.mark.asyncio
    async def test_envelope_payload(self, tmp_path, exercise_factory):
        (tmp_path / "all.json").write_text(json.dumps({"exercises": [exercise_factory("x")]}))

        records = await DirectoryExerciseSource(tmp_path).fetch()

        assert [r["id"] for r in records] == ["x"]

    @pytest.mark.asyncio
    async def test_missing_directory_raises_load_error(self, tmp_path):
        with pytest.raises(LoadError):
            await DirectoryExerciseSource(tmp_path / "missing").fetch()

    @pytest.mark.asyncio
    async def test_invalid_json_raises_load_error(self, tmp_path):
        (tmp_path / "broken.json").write_text("{not json")

        with pytest.raises(LoadError) as exc_info:
            await DirectoryExerciseSource(tmp_path).fetch()

        assert isinstance(exc_info.value.__cause__, json.JSONDecodeError)

    @pytest.mark.asyncio
    async def test_scalar_payload_raises_load_error(self, tmp_path):
        (tmp_path / "number.json").write_text("42")

        with pytest.raises(LoadError):
            await DirectoryExerciseSource(tmp_path).fetch()


class TestBundledExerciseSource:
    """Tests for the packaged sample collection."""

    @pytest.mark.asyncio
    async def test_bundled_collection_loads(self):
        records = await BundledExerciseSource().fetch()

        ids = [r["id"] for r in records]
        assert "whitespace-comments" in ids
        assert len(ids) == len(set(ids))


class TestHttpExerciseSource:
    """Tests for the exercise API source."""

    @pytest.mark.asyncio
    async def test_fetch_list(self, http_source, exercise_factory, monkeypatch):
        seen_urls = []

        async def mock_get(url, **kwargs):
            seen_urls.append(url)
            return Response(200, json=[exercise_factory("a")], request=Request("GET", url))

        monkeypatch.setattr(http_source.client, "get", mock_get)

        records = await http_source.fetch()

        assert seen_urls == ["http://localhost:3001/api/exercises"]
        assert records[0]["id"] == "a"

    @pytest.mark.asyncio
    async def test_fetch_data_envelope(self, http_source, exercise_factory, monkeypatch):
        async def mock_get(url, **kwargs):
            return Response(200, json={"data": [exercise_factory("b")]}, request=Request("GET", url))

        monkeypatch.setattr(http_source.client, "get", mock_get)

        records = await http_source.fetch()

        assert [r["id"] for r in records] == ["b"]

    @pytest.mark.asyncio
    async def test_server_error_raises_load_error(self, http_source, monkeypatch):
        async def mock_get(url, **kwargs):
            return Response(503, json={"error": "down"}, request=Request("GET", url))

        monkeypatch.setattr(http_source.client, "get", mock_get)

        with pytest.raises(LoadError):
            await http_source.fetch()

    @pytest.mark.asyncio
    async def test_connection_error_raises_load_error(self, http_source, monkeypatch):
        async def mock_get(url, **kwargs):
            raise httpx.ConnectError("refused", request=Request("GET", url))

        monkeypatch.setattr(http_source.client, "get", mock_get)

        with pytest.raises(LoadError) as exc_info:
            await http_source.fetch()

        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)


class TestCreateSource:
    """Tests for configuration-driven source selection."""

    def test_default_is_bundled(self):
        assert isinstance(create_source(Settings(_env_file=None)), BundledExerciseSource)

    def test_directory(self, tmp_path):
        source = create_source(Settings(_env_file=None, exercise_source="directory", exercise_dir=str(tmp_path)))

        assert isinstance(source, DirectoryExerciseSource)
        assert source.path == tmp_path

    @pytest.mark.asyncio
    async def test_http(self):
        source = create_source(Settings(_env_file=None, exercise_source="http", exercise_api_url="http://api"))

        assert isinstance(source, HttpExerciseSource)
        assert source.api_url == "http://api"
        await source.close()
