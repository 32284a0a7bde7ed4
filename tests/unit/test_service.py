"""
Unit tests for the ExerciseService facade.
"""

from datetime import datetime, timezone

import pytest

from cql_clinic.exercises.errors import InvalidInputError, NotFoundError
from cql_clinic.exercises.service import ExerciseService
from cql_clinic.exercises.sources import HttpExerciseSource, StaticExerciseSource


@pytest.fixture
def source(sample_exercises):
    return StaticExerciseSource(sample_exercises)


@pytest.fixture
def service(source, settings, fake_clock):
    return ExerciseService(source=source, settings=settings, clock=fake_clock)


class TestExerciseService:
    """End-to-end behaviour over a static source."""

    @pytest.mark.asyncio
    async def test_load_and_get(self, service):
        exercises = await service.load_exercises()
        exercise = await service.get_exercise("queries")

        assert len(exercises) == 3
        assert exercise.difficulty.value == "intermediate"

    @pytest.mark.asyncio
    async def test_get_unknown_raises(self, service):
        with pytest.raises(NotFoundError):
            await service.get_exercise("missing")

    @pytest.mark.asyncio
    async def test_search_with_mapping(self, service):
        results = await service.search_exercises({"difficulty": "beginner", "tags": ["types"]})

        assert [e.id for e in results] == ["literals"]

    @pytest.mark.asyncio
    async def test_cache_ttl_and_clear(self, service, source, fake_clock):
        await service.load_exercises()
        await service.search_exercises({"query": "cql"})
        assert source.fetch_count == 1

        fake_clock.advance(301)
        await service.load_exercises()
        assert source.fetch_count == 2

        service.clear_cache()
        assert len(service.search_cache) == 0
        await service.load_exercises()
        assert source.fetch_count == 3

    @pytest.mark.asyncio
    async def test_recommendations_unlock(self, service):
        first = await service.get_recommendations({"exerciseProgress": {}})
        later = await service.get_recommendations({"exerciseProgress": {"basics": {"completed": True}}})

        assert [rec.exercise.id for rec in first] == ["basics"]
        assert [rec.exercise.id for rec in later] == ["literals"]

    @pytest.mark.asyncio
    async def test_invalid_progress_rejected_before_load(self, service, source):
        with pytest.raises(InvalidInputError):
            await service.get_recommendations(None)

        assert source.fetch_count == 0

    @pytest.mark.asyncio
    async def test_analytics(self, service):
        analytics = await service.get_exercise_analytics(now=datetime(2024, 3, 5, tzinfo=timezone.utc))

        assert analytics.total == 3
        assert analytics.average_estimated_time == 20
        assert analytics.recently_added == 1

    @pytest.mark.asyncio
    async def test_filter_options(self, service):
        options = await service.get_filter_options()

        assert options["difficulties"] == ["beginner", "intermediate"]

    @pytest.mark.asyncio
    async def test_dependencies(self, service):
        report = service.validate_exercise_dependencies(await service.load_exercises())
        checked = await service.check_dependencies()

        assert report.valid is True
        assert checked.dependency_graph == {"basics": [], "literals": ["basics"], "queries": ["literals"]}

    @pytest.mark.asyncio
    async def test_default_source_is_bundled(self, settings):
        service = ExerciseService(settings=settings)

        exercises = await service.load_exercises()
        report = await service.check_dependencies()

        assert len(exercises) >= 5
        assert report.valid is True

    @pytest.mark.asyncio
    async def test_clear_cache_drops_search_results(self, service, source, exercise_factory):
        await service.search_exercises({"tags": ["types"]})
        source.records.append(exercise_factory("dates", tags=["types"]))

        service.clear_cache()
        results = await service.search_exercises({"tags": ["types"]})

        assert [e.id for e in results] == ["literals", "dates"]


class TestValidateCollection:
    """Tests for whole-collection validation and cleanup."""

    @pytest.mark.asyncio
    async def test_single_fetch_reports_invalid_records(self, sample_exercises, exercise_factory, settings, fake_clock):
        source = StaticExerciseSource(sample_exercises + [exercise_factory("bare-files", files=["main.cql"])])
        service = ExerciseService(source=source, settings=settings, clock=fake_clock)

        batch, report = await service.validate_collection()

        assert source.fetch_count == 1
        assert batch.summary["total"] == 4
        assert batch.summary["invalid"] == 1
        assert report.valid is True
        assert list(report.dependency_graph) == ["basics", "literals", "queries"]

    @pytest.mark.asyncio
    async def test_close_releases_http_client(self, settings, monkeypatch):
        source = HttpExerciseSource("http://exercises.test/api")
        service = ExerciseService(source=source, settings=settings)
        closed = []

        async def fake_aclose():
            closed.append(True)

        monkeypatch.setattr(source.client, "aclose", fake_aclose)

        await service.close()

        assert closed == [True]

    @pytest.mark.asyncio
    async def test_close_without_client_is_noop(self, service):
        await service.close()

        assert len(await service.load_exercises()) == 3
