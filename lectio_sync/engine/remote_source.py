"""
Remote canonical store client.

RemoteSource is the only network-facing call the engine makes:
fetch(date) -> RemoteSnapshot, or FetchError.

HttpRemoteSource talks to a PostgREST-style REST API:
- GET /rest/v1/liturgical_days?date=eq.<YYYY-MM-DD>
- GET /rest/v1/liturgical_readings?liturgical_day_id=eq.<id>&order=order_sequence.asc
"""

import logging
from datetime import date
from typing import Optional, Protocol

import httpx

from .entities import LiturgicalDay, LiturgicalReading, RemoteSnapshot
from .errors import FetchError


logger = logging.getLogger(__name__)

DAYS_PATH = "/rest/v1/liturgical_days"
READINGS_PATH = "/rest/v1/liturgical_readings"


class RemoteSource(Protocol):
    """Protocol for the canonical content store."""

    def fetch(self, target_date: date) -> RemoteSnapshot:
        """
        Fetch a liturgical day and its readings.

        Raises:
            FetchError: On network, timeout, remote-side or payload errors,
                and when the store has no day for target_date
        """
        ...


class HttpRemoteSource:
    """httpx-based RemoteSource."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Args:
            base_url: Root URL of the REST API
            api_key: Sent as both `apikey` and bearer token when set
            timeout: Request timeout in seconds
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        headers = {
            "Accept": "application/json",
            "User-Agent": "lectio-sync",
        }
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"

        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def _get_rows(self, target_date: date, path: str, params: dict) -> list[dict]:
        try:
            response = self._client.get(path, params=params)
            response.raise_for_status()
            rows = response.json()
        except httpx.TimeoutException as e:
            raise FetchError(target_date, f"Timeout after {self.timeout}s") from e
        except httpx.HTTPStatusError as e:
            raise FetchError(
                target_date,
                f"HTTP {e.response.status_code}: {e.response.text[:200]}",
            ) from e
        except httpx.RequestError as e:
            raise FetchError(target_date, f"Request error: {e}") from e
        except ValueError as e:
            raise FetchError(target_date, f"Invalid JSON response: {e}") from e

        if not isinstance(rows, list):
            raise FetchError(target_date, "Unexpected response shape (expected a list)")
        return rows

    def fetch(self, target_date: date) -> RemoteSnapshot:
        day_rows = self._get_rows(
            target_date,
            DAYS_PATH,
            {"select": "*", "date": f"eq.{target_date.isoformat()}", "limit": "1"},
        )
        if not day_rows:
            raise FetchError(target_date, "No liturgical day in remote store")

        try:
            day = LiturgicalDay.from_dict(day_rows[0])
        except (KeyError, TypeError, ValueError) as e:
            raise FetchError(target_date, f"Malformed day payload: {e}") from e

        reading_rows = self._get_rows(
            target_date,
            READINGS_PATH,
            {
                "select": "*",
                "liturgical_day_id": f"eq.{day.id}",
                "order": "order_sequence.asc",
            },
        )
        try:
            readings = [LiturgicalReading.from_dict(row) for row in reading_rows]
        except (KeyError, TypeError, ValueError) as e:
            raise FetchError(target_date, f"Malformed reading payload: {e}") from e

        logger.debug(f"Fetched {target_date.isoformat()}: day {day.id}, {len(readings)} readings")
        return RemoteSnapshot(day=day, readings=readings)

    def close(self) -> None:
        self._client.close()
