"""Encyclopedia lookup against the Wikipedia search API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from identifyx.errors import LookupFailedError

if TYPE_CHECKING:
    from identifyx.config import Settings

logger = logging.getLogger(__name__)

ARTICLE_URL_TEMPLATE = "https://en.wikipedia.org/?curid={page_id}"


@dataclass(frozen=True)
class LookupResult:
    """A single search hit. ``snippet`` may contain search-match markup."""

    title: str
    page_id: int
    snippet: str

    @property
    def url(self) -> str:
        return ARTICLE_URL_TEMPLATE.format(page_id=self.page_id)


class LookupGateway:
    """Queries the search endpoint and returns results in API order."""

    def __init__(self, client: httpx.AsyncClient, settings: Settings) -> None:
        self._client = client
        self._endpoint = settings.lookup_endpoint
        self._limit = settings.lookup_limit
        self._headers = {"User-Agent": settings.user_agent}

    def build_params(self, term: str) -> dict[str, str]:
        return {
            "action": "query",
            "list": "search",
            "prop": "info",
            "inprop": "url",
            "utf8": "",
            "format": "json",
            "srlimit": str(self._limit),
            "srsearch": term,
        }

    async def search(self, term: str) -> list[LookupResult]:
        """Search for ``term``.

        Raises:
            LookupFailedError: On transport errors, non-2xx responses or
                responses that are not the expected JSON shape.
        """
        try:
            response = await self._client.get(self._endpoint, params=self.build_params(term), headers=self._headers)
        except httpx.HTTPError as exc:
            raise LookupFailedError(f"Search request failed: {exc}") from exc

        if not response.is_success:
            raise LookupFailedError(response.reason_phrase or f"HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise LookupFailedError("Search response is not valid JSON") from exc

        results = _parse_results(payload)
        logger.info("Lookup for %r returned %d results", term, len(results))
        return results


def _parse_results(payload: Any) -> list[LookupResult]:
    try:
        hits = payload["query"]["search"]
        return [
            LookupResult(title=str(hit["title"]), page_id=int(hit["pageid"]), snippet=str(hit.get("snippet", "")))
            for hit in hits
        ]
    except (KeyError, TypeError, ValueError) as exc:
        raise LookupFailedError(f"Unexpected search response shape: {exc!r}") from exc
