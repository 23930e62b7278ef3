"""Catalog access backed by The Movie Database (TMDB)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Literal

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..models import AccountLink, CatalogItem, ContentType

logger = logging.getLogger(__name__)

TrendingWindow = Literal["day", "week"]

TMDB_PATH_SEGMENTS: dict[str, str] = {"movie": "movie", "series": "tv"}
MIN_VOTE_COUNT = 100


@dataclass(slots=True)
class CatalogBatch:
    """Items returned by one catalog call.

    ``fetched`` is ``False`` when the upstream call failed, which lets
    callers tell an unavailable source apart from an empty answer.
    """

    items: list[CatalogItem] = field(default_factory=list)
    fetched: bool = True
    error: str | None = None

    @classmethod
    def failed(cls, error: str) -> "CatalogBatch":
        return cls(items=[], fetched=False, error=error)


class TMDBClient:
    """Read-only client for the TMDB endpoints used by the recommenders."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        if not settings.has_tmdb_credentials:
            raise ValueError(
                "A TMDB API key or read access token is required when initialising TMDBClient"
            )
        self._settings = settings
        self._client = http_client

    def _headers(self, *, access_token: str | None = None) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "User-Agent": f"{self._settings.app_name} (reelsense)",
        }
        token = access_token or self._settings.tmdb_read_access_token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _params(self, **extra: Any) -> dict[str, Any]:
        params: dict[str, Any] = {"language": self._settings.tmdb_language}
        if self._settings.tmdb_api_key:
            params["api_key"] = self._settings.tmdb_api_key
        params.update({key: value for key, value in extra.items() if value is not None})
        return params

    def resolve_account(self, account: AccountLink | None = None) -> AccountLink | None:
        """Return the request account link, falling back to the configured one."""

        if account is not None:
            return account
        token = self._settings.tmdb_account_access_token
        account_id = self._settings.tmdb_account_id
        if token and account_id:
            return AccountLink(access_token=token, account_id=account_id)
        return None

    async def search_by_genre(
        self,
        genre_id: int,
        content_type: ContentType = "movie",
        *,
        sort_by: str = "vote_average.desc",
        page: int = 1,
    ) -> CatalogBatch:
        """Discover titles of one genre, best rated first by default."""

        segment = TMDB_PATH_SEGMENTS[content_type]
        return await self._fetch(
            f"/discover/{segment}",
            params=self._params(
                with_genres=str(genre_id),
                sort_by=sort_by,
                page=page,
                include_adult="false",
                **{"vote_count.gte": MIN_VOTE_COUNT},
            ),
            content_type=content_type,
            describe=f"{content_type} discovery for genre {genre_id}",
        )

    async def get_similar(
        self, content_id: int, content_type: ContentType, *, page: int = 1
    ) -> CatalogBatch:
        segment = TMDB_PATH_SEGMENTS[content_type]
        return await self._fetch(
            f"/{segment}/{content_id}/similar",
            params=self._params(page=page),
            content_type=content_type,
            describe=f"similar titles for {content_type} {content_id}",
        )

    async def get_trending(self, window: TrendingWindow = "week") -> CatalogBatch:
        """Return trending movies and series; people are dropped."""

        if window not in ("day", "week"):
            raise ValueError(f"Unsupported trending window: {window}")
        return await self._fetch(
            f"/trending/all/{window}",
            params=self._params(),
            describe=f"trending ({window})",
        )

    async def get_popular(
        self, content_type: ContentType, *, page: int = 1
    ) -> CatalogBatch:
        segment = TMDB_PATH_SEGMENTS[content_type]
        return await self._fetch(
            f"/{segment}/popular",
            params=self._params(page=page),
            content_type=content_type,
            describe=f"popular {content_type}",
        )

    async def get_account_recommendations(
        self,
        content_type: ContentType,
        *,
        account: AccountLink | None = None,
        page: int = 1,
    ) -> CatalogBatch:
        """Fetch TMDB's own recommendations for a linked account.

        Without an account link there is nothing to fetch, which is a
        successful empty answer rather than a failure.
        """

        link = self.resolve_account(account)
        if link is None:
            logger.debug("No TMDB account link, skipping %s recommendations", content_type)
            return CatalogBatch(items=[], fetched=True)

        segment = TMDB_PATH_SEGMENTS[content_type]
        base_url = str(self._settings.tmdb_v4_api_url).rstrip("/")
        return await self._fetch(
            f"{base_url}/account/{link.account_id}/{segment}/recommendations",
            params={"page": page, "language": self._settings.tmdb_language},
            headers=self._headers(access_token=link.access_token),
            content_type=content_type,
            describe=f"account {content_type} recommendations",
        )

    async def _fetch(
        self,
        url: str,
        *,
        params: dict[str, Any],
        describe: str,
        headers: dict[str, str] | None = None,
        content_type: ContentType | None = None,
    ) -> CatalogBatch:
        try:
            response = await self._client.get(
                url, params=params, headers=headers or self._headers()
            )
        except httpx.HTTPError as exc:
            logger.warning("TMDB request for %s failed: %s", describe, exc)
            return CatalogBatch.failed(f"{exc.__class__.__name__}: {exc}")

        if response.status_code >= 400:
            logger.warning(
                "TMDB request for %s failed with %s: %s",
                describe,
                response.status_code,
                response.text,
            )
            return CatalogBatch.failed(f"HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError:
            logger.warning("Unexpected non-JSON TMDB response for %s", describe)
            return CatalogBatch.failed("invalid JSON")

        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list):
            logger.warning("Unexpected TMDB response structure for %s", describe)
            return CatalogBatch.failed("unexpected payload")

        items: list[CatalogItem] = []
        for entry in results:
            if not isinstance(entry, dict):
                continue
            try:
                item = CatalogItem.from_tmdb(entry, content_type=content_type)
            except ValidationError as exc:
                logger.debug("Skipping malformed TMDB entry in %s: %s", describe, exc)
                continue
            if item is not None:
                items.append(item)
        return CatalogBatch(items=items, fetched=True)
