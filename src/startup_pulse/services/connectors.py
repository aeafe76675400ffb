"""External data-source connector interface and source definitions."""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx

# fetch(query, limit, options) -> text or structured records
Connector = Callable[[str, int, dict[str, Any]], Awaitable[str | list[dict]]]


class ConnectorError(Exception):
    """Raised when a connector call fails."""

    pass


@dataclass(frozen=True)
class SourceSpec:
    """One result slot filled by one connector call."""

    slot: str
    connector: str
    query: str = "{subject}"
    limit: int = 50
    smart_match: bool = False

    def render_query(self, subject: str, **values: str) -> str:
        return self.query.format(subject=subject, **values)

    def options(self, website: str | None) -> dict[str, Any]:
        if self.smart_match:
            return {"smart_match": True, "website": website}
        return {}


PRIMARY_SOURCES = (
    SourceSpec("twitter", "twitter", limit=100, smart_match=True),
    SourceSpec("reddit", "reddit", limit=50, smart_match=True),
    SourceSpec("bluesky", "bluesky", limit=50),
    SourceSpec("youtube", "youtube", query="{subject} demo review", limit=25),
    SourceSpec("tiktok", "tiktok", limit=50, smart_match=True),
    SourceSpec("instagram", "instagram", limit=50, smart_match=True),
)

SECONDARY_SOURCES = (
    SourceSpec("web_general", "web_general", limit=20),
    SourceSpec("linkedin", "linkedin", limit=10),
    SourceSpec("news", "news", query="{subject} funding announcement", limit=10),
    SourceSpec("tech_community", "tech_community", limit=15),
)

FOUNDER_SOURCE = SourceSpec("founder:{founder}", "linkedin", query="{founder} {subject}", limit=10)
COMPETITOR_SOURCE = SourceSpec(
    "competitor:{competitor}", "web_general", query="{subject} vs {competitor} comparison", limit=15
)


class HttpSourceConnector:
    """Connector backed by a search gateway.

    Calls `GET {base_url}/sources/{source}/search` and returns either the
    gateway's `records` list or its `text` body.
    """

    def __init__(
        self,
        base_url: str,
        source: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not base_url or not base_url.strip():
            raise ValueError("base_url is required")
        if not source:
            raise ValueError("source is required")
        if timeout <= 0:
            raise ValueError("timeout must be positive")

        self._base_url = base_url.rstrip("/")
        self._source = source
        self._timeout = timeout
        self._transport = transport

    @property
    def source(self) -> str:
        return self._source

    async def __call__(
        self, query: str, limit: int, options: dict[str, Any]
    ) -> str | list[dict]:
        if not query or not query.strip():
            raise ValueError("query is required")

        params: dict[str, Any] = {"q": query, "limit": limit}
        for key, value in (options or {}).items():
            if value is not None:
                params[key] = str(value).lower() if isinstance(value, bool) else value

        url = f"{self._base_url}/sources/{self._source}/search"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.get(url, params=params)
        except httpx.TimeoutException as e:
            raise ConnectorError(f"{self._source} request timed out: {e}") from e
        except httpx.RequestError as e:
            raise ConnectorError(f"{self._source} request failed: {e}") from e

        if response.status_code >= 400:
            raise ConnectorError(
                f"{self._source} returned HTTP {response.status_code}: {response.text}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ConnectorError(f"{self._source} returned invalid JSON: {e}") from e

        if isinstance(data, dict) and isinstance(data.get("records"), list):
            return data["records"]
        if isinstance(data, dict) and isinstance(data.get("text"), str):
            return data["text"]
        raise ConnectorError(f"{self._source} returned an unexpected payload")


def build_http_connectors(
    base_url: str, timeout: float = 30.0
) -> dict[str, HttpSourceConnector]:
    """One gateway connector per source named in the source definitions."""
    names = {spec.connector for spec in PRIMARY_SOURCES + SECONDARY_SOURCES}
    return {
        name: HttpSourceConnector(base_url, name, timeout=timeout)
        for name in sorted(names)
    }
