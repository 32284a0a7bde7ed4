"""
CQL execution sandbox client.

Handles HTTP communication with the remote CQL execution service: code is
passed through as-is and the service answers with a list of named results
(value + type) or error entries with a location.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
from loguru import logger


class SandboxError(Exception):
    """Raised when the CQL service rejects a request or stays unavailable."""
    pass


@dataclass
class CQLExecutionRequest:
    """Request payload for CQL evaluation."""

    code: str
    patient_id: str = "example-patient-id"
    terminology_service_uri: Optional[str] = None
    data_service_uri: Optional[str] = None
    parameters: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self, base_url: str) -> dict[str, Any]:
        """Convert request to API payload format."""
        return {
            "code": self.code,
            "terminologyServiceUri": self.terminology_service_uri or base_url,
            "dataServiceUri": self.data_service_uri or base_url,
            "patientId": self.patient_id,
            "parameters": self.parameters,
        }


@dataclass
class CQLResult:
    """One entry of the evaluation response."""

    name: Optional[str]
    result: Any = None
    result_type: Optional[str] = None
    location: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CQLResult:
        """Parse one entry from the API response."""
        return cls(
            name=data.get("name"),
            result=data.get("result"),
            result_type=data.get("resultType"),
            location=data.get("location"),
            error=data.get("error") or data.get("translator-error"),
        )


@dataclass
class SubmissionScore:
    """Comparison of evaluated results with a reference answer."""

    passed: bool
    score: float
    matched: list[str] = field(default_factory=list)
    mismatched: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def score_against_reference(results: list[CQLResult], expected: dict[str, Any]) -> SubmissionScore:
    """
    Score a submission by comparing named results with reference values.

    Values are compared as text so "2" from the service matches 2 in the
    reference. Any error entry fails the submission.
    """
    by_name = {r.name: r for r in results if r.name is not None and not r.is_error}
    errors = [f"{r.location or '?'}: {r.error}" for r in results if r.is_error]

    matched, mismatched, missing = [], [], []
    for name, value in expected.items():
        actual = by_name.get(name)
        if actual is None:
            missing.append(name)
        elif str(actual.result) == str(value):
            matched.append(name)
        else:
            mismatched.append(name)

    score = 100.0 * len(matched) / len(expected) if expected else 100.0
    if errors and not expected:
        score = 0.0
    return SubmissionScore(
        passed=not errors and not mismatched and not missing,
        score=score,
        matched=matched,
        mismatched=mismatched,
        missing=missing,
        errors=errors,
    )


class CQLSandboxClient:
    """HTTP client for the CQL execution service."""

    def __init__(
        self,
        api_url: str,
        timeout_ms: int = 30000,
        retry_attempts: int = 3,
    ):
        """
        Initialize sandbox client.

        Args:
            api_url: Base URL for the CQL execution service
            timeout_ms: Request timeout in milliseconds
            retry_attempts: Number of attempts on transient failure
        """
        self.api_url = api_url.rstrip("/")
        self.timeout_seconds = timeout_ms / 1000.0
        self.retry_attempts = retry_attempts
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_seconds),
            follow_redirects=True,
            headers={"User-Agent": "CQL-Code-Clinic/1.0.0"},
        )

    async def __aenter__(self) -> CQLSandboxClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def execute(self, request: CQLExecutionRequest) -> list[CQLResult]:
        """
        Evaluate CQL code with retry logic.

        Args:
            request: Code and evaluation context

        Returns:
            Named results and error entries, in service order

        Raises:
            SandboxError: On 4xx responses or when all attempts fail
        """
        last_error: Exception | None = None
        logger.info(f"Executing CQL code ({len(request.code)} chars)")

        for attempt in range(self.retry_attempts):
            try:
                response = await self.client.post(
                    f"{self.api_url}/cql/evaluate",
                    json=request.to_dict(self.api_url),
                )
                response.raise_for_status()

                data = response.json()
                if not isinstance(data, list):
                    raise SandboxError(f"Unexpected CQL service response: {type(data).__name__}")
                results = [CQLResult.from_dict(item) for item in data if isinstance(item, dict)]
                logger.info(
                    f"CQL execution completed: {len(results)} results, "
                    f"{sum(1 for r in results if r.is_error)} errors"
                )
                return results

            except httpx.TimeoutException as e:
                last_error = e
                wait_time = 2 ** attempt  # Exponential backoff: 1s, 2s, 4s
                logger.warning(
                    f"CQL service timeout on attempt {attempt + 1}/{self.retry_attempts}. "
                    f"Retrying in {wait_time}s..."
                )
                if attempt < self.retry_attempts - 1:
                    await asyncio.sleep(wait_time)

            except httpx.HTTPStatusError as e:
                last_error = e
                if e.response.status_code >= 500:
                    wait_time = 2 ** attempt
                    logger.warning(
                        f"CQL service error {e.response.status_code} on attempt "
                        f"{attempt + 1}/{self.retry_attempts}. Retrying in {wait_time}s..."
                    )
                    if attempt < self.retry_attempts - 1:
                        await asyncio.sleep(wait_time)
                else:
                    logger.error(f"CQL service rejected request: {e.response.status_code}")
                    raise SandboxError(
                        f"CQL execution failed: {_error_detail(e.response)}"
                    ) from e

            except httpx.RequestError as e:
                last_error = e
                wait_time = 2 ** attempt
                logger.warning(
                    f"CQL service request error on attempt {attempt + 1}/{self.retry_attempts}: {e}. "
                    f"Retrying in {wait_time}s..."
                )
                if attempt < self.retry_attempts - 1:
                    await asyncio.sleep(wait_time)

            except ValueError as e:
                logger.error(f"Unparseable CQL service response: {e}")
                raise SandboxError(f"Unparseable CQL service response: {e}") from e

        error_msg = f"CQL execution failed after {self.retry_attempts} attempts"
        logger.error(f"{error_msg}: {last_error}")
        raise SandboxError(f"{error_msg}. The CQL execution service is unavailable.") from last_error

    async def format(self, code: str) -> str:
        """Format CQL code, returning the original code if the service fails."""
        try:
            response = await self.client.post(
                f"{self.api_url}/cql/format",
                json={"code": code},
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Falling back to original CQL code due to formatting error: {e}")
            return code

        if isinstance(data, list) and data and isinstance(data[0], dict):
            return data[0].get("formatted-cql", code)
        return code

    async def health_check(self) -> bool:
        """
        Check if the CQL service is available.

        Returns:
            True if the service is healthy, False otherwise
        """
        try:
            response = await self.client.get(
                f"{self.api_url}/health",
                timeout=5.0,
            )
            return response.status_code == 200

        except httpx.HTTPError:
            return False


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or "Invalid request"
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return "Invalid request"
