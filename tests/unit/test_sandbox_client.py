"""
Unit tests for the CQL execution sandbox client.
"""

import pytest
import pytest_asyncio
from httpx import ConnectError, HTTPStatusError, Request, Response, TimeoutException

from cql_clinic.sandbox.client import (
    CQLExecutionRequest,
    CQLResult,
    CQLSandboxClient,
    SandboxError,
    score_against_reference,
)


@pytest.fixture
def sample_request():
    """Sample execution request for testing."""
    return CQLExecutionRequest(
        code='define "A Decimal": 3.14\ndefine "A Boolean": true',
        patient_id="patient-42",
    )


@pytest.fixture
def sample_response():
    """Sample evaluation response for testing."""
    return [
        {"name": "A Decimal", "result": "3.14", "resultType": "Decimal"},
        {"name": "A Boolean", "result": "true", "resultType": "Boolean"},
    ]


@pytest_asyncio.fixture
async def client():
    """Sandbox client instance."""
    client = CQLSandboxClient(
        api_url="http://localhost:8080/fhir/",
        timeout_ms=5000,
        retry_attempts=2,
    )
    yield client
    await client.close()


class TestCQLExecutionRequest:
    """Tests for CQLExecutionRequest dataclass."""

    def test_to_dict_defaults_service_uris(self, sample_request):
        data = sample_request.to_dict("http://localhost:8080/fhir")

        assert data["code"].startswith("define")
        assert data["patientId"] == "patient-42"
        assert data["terminologyServiceUri"] == "http://localhost:8080/fhir"
        assert data["dataServiceUri"] == "http://localhost:8080/fhir"
        assert data["parameters"] == []

    def test_to_dict_explicit_uris(self):
        request = CQLExecutionRequest(code="1", terminology_service_uri="http://tx", data_service_uri="http://data")

        data = request.to_dict("http://base")

        assert data["terminologyServiceUri"] == "http://tx"
        assert data["dataServiceUri"] == "http://data"


class TestCQLResult:
    """Tests for CQLResult parsing."""

    def test_from_dict_value(self):
        result = CQLResult.from_dict({"name": "X", "result": "1", "resultType": "Integer"})

        assert result.name == "X"
        assert result.result_type == "Integer"
        assert result.is_error is False

    def test_from_dict_translator_error(self):
        result = CQLResult.from_dict({"translator-error": "Could not resolve identifier", "location": "[1:8]"})

        assert result.is_error is True
        assert result.error == "Could not resolve identifier"
        assert result.location == "[1:8]"


class TestScoreAgainstReference:
    """Tests for submission scoring."""

    def test_all_matched(self):
        results = [CQLResult("A", "3.14"), CQLResult("B", True)]

        score = score_against_reference(results, {"A": 3.14, "B": True})

        assert score.passed is True
        assert score.score == 100.0
        assert score.matched == ["A", "B"]

    def test_partial_match(self):
        results = [CQLResult("A", "1"), CQLResult("B", "2")]

        score = score_against_reference(results, {"A": 1, "B": 3, "C": 4})

        assert score.passed is False
        assert score.score == pytest.approx(100 / 3)
        assert score.mismatched == ["B"]
        assert score.missing == ["C"]

    def test_error_fails_submission(self):
        results = [CQLResult(None, error="Syntax error", location="[2:1]")]

        score = score_against_reference(results, {})

        assert score.passed is False
        assert score.score == 0.0
        assert score.errors == ["[2:1]: Syntax error"]


class TestCQLSandboxClient:
    """Tests for CQLSandboxClient class."""

    @pytest.mark.asyncio
    async def test_execute_success(self, client, sample_request, sample_response, monkeypatch):
        """Test successful evaluation."""
        posted = {}

        async def mock_post(url, **kwargs):
            posted["url"] = url
            posted["json"] = kwargs["json"]
            return Response(200, json=sample_response, request=Request("POST", url))

        monkeypatch.setattr(client.client, "post", mock_post)

        results = await client.execute(sample_request)

        assert posted["url"] == "http://localhost:8080/fhir/cql/evaluate"
        assert posted["json"]["patientId"] == "patient-42"
        assert [r.name for r in results] == ["A Decimal", "A Boolean"]
        assert results[0].result_type == "Decimal"

    @pytest.mark.asyncio
    async def test_execute_timeout_retry(self, client, sample_request, sample_response, monkeypatch):
        """Test retry logic on timeout."""
        call_count = 0

        async def mock_post(url, **kwargs):
            nonlocal call_count
            call_count += 1
            if call_count < 2:
                raise TimeoutException("Timeout")
            return Response(200, json=sample_response, request=Request("POST", url))

        monkeypatch.setattr(client.client, "post", mock_post)

        results = await client.execute(sample_request)

        assert call_count == 2
        assert len(results) == 2

    @pytest.mark.asyncio
    async def test_execute_server_error_retry(self, client, sample_request, sample_response, monkeypatch):
        """Test retry logic on 5xx server errors."""
        call_count = 0

        async def mock_post(url, **kwargs):
            nonlocal call_count
            call_count += 1
            request = Request("POST", url)
            if call_count < 2:
                return Response(502, json={"error": "Bad gateway"}, request=request)
            return Response(200, json=sample_response, request=request)

        monkeypatch.setattr(client.client, "post", mock_post)

        results = await client.execute(sample_request)

        assert call_count == 2
        assert results[1].name == "A Boolean"

    @pytest.mark.asyncio
    async def test_execute_client_error_no_retry(self, client, sample_request, monkeypatch):
        """Test that 4xx errors don't trigger retries."""
        call_count = 0

        async def mock_post(url, **kwargs):
            nonlocal call_count
            call_count += 1
            request = Request("POST", url)
            response = Response(400, json={"error": "Missing code"}, request=request)
            raise HTTPStatusError("Client error", request=request, response=response)

        monkeypatch.setattr(client.client, "post", mock_post)

        with pytest.raises(SandboxError, match="Missing code"):
            await client.execute(sample_request)

        assert call_count == 1

    @pytest.mark.asyncio
    async def test_execute_all_retries_exhausted(self, client, sample_request, monkeypatch):
        """Test behavior when all retries are exhausted."""
        call_count = 0

        async def mock_post(url, **kwargs):
            nonlocal call_count
            call_count += 1
            raise ConnectError("Connection refused", request=Request("POST", url))

        monkeypatch.setattr(client.client, "post", mock_post)

        with pytest.raises(SandboxError) as exc_info:
            await client.execute(sample_request)

        assert call_count == 2
        assert "unavailable" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, ConnectError)

    @pytest.mark.asyncio
    async def test_execute_unexpected_payload(self, client, sample_request, monkeypatch):
        async def mock_post(url, **kwargs):
            return Response(200, json={"not": "a list"}, request=Request("POST", url))

        monkeypatch.setattr(client.client, "post", mock_post)

        with pytest.raises(SandboxError):
            await client.execute(sample_request)

    @pytest.mark.asyncio
    async def test_format_success(self, client, monkeypatch):
        async def mock_post(url, **kwargs):
            assert url.endswith("/cql/format")
            return Response(200, json=[{"formatted-cql": "define \"X\":\n  1"}], request=Request("POST", url))

        monkeypatch.setattr(client.client, "post", mock_post)

        assert await client.format('define "X": 1') == 'define "X":\n  1'

    @pytest.mark.asyncio
    async def test_format_falls_back_on_error(self, client, monkeypatch):
        async def mock_post(url, **kwargs):
            raise TimeoutException("Timeout")

        monkeypatch.setattr(client.client, "post", mock_post)

        assert await client.format('define "X": 1') == 'define "X": 1'

    @pytest.mark.asyncio
    async def test_health_check(self, client, monkeypatch):
        async def mock_get(url, **kwargs):
            return Response(200, json={"status": "ok"}, request=Request("GET", url))

        monkeypatch.setattr(client.client, "get", mock_get)

        assert await client.health_check() is True

    @pytest.mark.asyncio
    async def test_health_check_unreachable(self, client, monkeypatch):
        async def mock_get(url, **kwargs):
            raise ConnectError("Connection refused", request=Request("GET", url))

        monkeypatch.setattr(client.client, "get", mock_get)

        assert await client.health_check() is False
