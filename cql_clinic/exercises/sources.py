"""
Exercise sources.

A source returns the raw (unvalidated) exercise records; the store decides
which of them are usable. Every source raises LoadError when it cannot
produce a list of records at all.
"""

from __future__ import annotations

import copy
import json
from importlib import resources
from pathlib import Path
from typing import Any, Optional, Protocol

import httpx
from loguru import logger

from cql_clinic.config import Settings
from cql_clinic.exercises.errors import LoadError

BUNDLED_PACKAGE = "cql_clinic.content.exercises"


class ExerciseSource(Protocol):
    """Anything that can fetch raw exercise records."""

    async def fetch(self) -> list[dict[str, Any]]:
        ...


def _records_from_payload(payload: Any, origin: str) -> list[dict[str, Any]]:
    """Accept a bare list, a single record, or a {"exercises"|"data": [...]} envelope."""
    if isinstance(payload, dict):
        for key in ("exercises", "data"):
            if isinstance(payload.get(key), list):
                payload = payload[key]
                break
        else:
            if "id" in payload:
                payload = [payload]
    if not isinstance(payload, list):
        raise LoadError(f"Unexpected exercise payload from {origin}: {type(payload).__name__}")
    return [item for item in payload if isinstance(item, dict)]


def _parse_json(text: str, origin: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise LoadError(f"Unparseable exercise data in {origin}: {e}") from e


class StaticExerciseSource:
    """In-memory records, mainly for tests and embedding."""

    def __init__(self, records: list[dict[str, Any]]):
        self.records = records
        self.fetch_count = 0

    async def fetch(self) -> list[dict[str, Any]]:
        self.fetch_count += 1
        return copy.deepcopy(self.records)


class DirectoryExerciseSource:
    """Every *.json file in a directory; each holds one record or a list."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    async def fetch(self) -> list[dict[str, Any]]:
        if not self.path.is_dir():
            raise LoadError(f"Exercise directory not found: {self.path}")

        records: list[dict[str, Any]] = []
        for file_path in sorted(self.path.glob("*.json")):
            try:
                text = file_path.read_text(encoding="utf-8-sig")
            except OSError as e:
                raise LoadError(f"Failed to read {file_path}: {e}") from e
            records.extend(_records_from_payload(_parse_json(text, str(file_path)), str(file_path)))

        logger.debug(f"Read {len(records)} exercise records from {self.path}")
        return records


class BundledExerciseSource:
    """Sample collection shipped inside the package."""

    def __init__(self, package: str = BUNDLED_PACKAGE):
        self.package = package

    async def fetch(self) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        entries = sorted(resources.files(self.package).iterdir(), key=lambda entry: entry.name)
        for entry in entries:
            if entry.name.endswith(".json"):
                text = entry.read_text(encoding="utf-8-sig")
                records.extend(_records_from_payload(_parse_json(text, entry.name), entry.name))
        return records


class HttpExerciseSource:
    """Exercise API over HTTP (GET {api_url}/exercises)."""

    def __init__(
        self,
        api_url: str,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            follow_redirects=True,
            headers={"Content-Type": "application/json"},
        )

    async def close(self) -> None:
        await self.client.aclose()

    async def fetch(self) -> list[dict[str, Any]]:
        url = f"{self.api_url}/exercises"
        logger.debug(f"Exercise API request: GET {url}")
        try:
            response = await self.client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Exercise API error: {e}")
            raise LoadError(f"Failed to load exercises: {e}") from e

        logger.debug(f"Exercise API response: {response.status_code} {url}")
        return _records_from_payload(_parse_json(response.text, url), url)


def create_source(settings: Settings) -> ExerciseSource:
    """Build the source selected by configuration."""
    if settings.exercise_source == "directory":
        return DirectoryExerciseSource(settings.exercise_dir)
    if settings.exercise_source == "http":
        return HttpExerciseSource(settings.exercise_api_url, settings.http_timeout_seconds)
    return BundledExerciseSource()
