"""Cached client for The Movie Database (TMDB) catalog."""

from __future__ import annotations

import asyncio
import copy
import logging
import math
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Literal

import httpx
from pydantic import ValidationError

from ..cache import FetchCache
from ..config import Settings
from ..models import MediaType, PagedResult
from ..utils import build_cache_key, split_endpoint

logger = logging.getLogger(__name__)

TrendingType = Literal["all", "movie", "tv"]
TimeWindow = Literal["day", "week"]
SearchKind = Literal["movie", "tv", "multi"]

MOVIE_LISTS = frozenset({"popular", "top_rated", "upcoming", "now_playing"})
TV_LISTS = frozenset({"popular", "top_rated", "on_the_air", "airing_today"})
RECENT_RELEASE_DAYS = 30


def _parse_date(value: Any) -> date | None:
    if not value or not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


class CatalogError(Exception):
    """Raised when the catalog cannot be reached or rejects a request."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(slots=True)
class MediaPageData:
    """Everything a title page shows, fetched in one round."""

    details: dict[str, Any]
    videos: list[dict[str, Any]] = field(default_factory=list)
    credits: dict[str, Any] = field(default_factory=dict)
    similar: list[dict[str, Any]] = field(default_factory=list)
    reviews: list[dict[str, Any]] = field(default_factory=list)


class TMDBClient:
    """Typed, cached access to the TMDB v3 API.

    Every call is a side-effect-free GET, so responses are cached by endpoint
    and parameters in the injected :class:`FetchCache`. Failures raise
    :class:`CatalogError`; callers decide whether to degrade or surface them.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        cache: FetchCache,
    ) -> None:
        if not settings.tmdb_api_key:
            raise ValueError("TMDB API key is required when initialising TMDBClient")
        self._settings = settings
        self._client = http_client
        self._cache = cache

    @property
    def cache(self) -> FetchCache:
        return self._cache

    # Lists -----------------------------------------------------------------

    async def list_media(
        self, media_type: MediaType, list_name: str, page: int = 1
    ) -> PagedResult:
        """Fetch one of the curated movie or TV lists."""

        allowed = MOVIE_LISTS if media_type == "movie" else TV_LISTS
        if list_name not in allowed:
            raise ValueError(f"Unknown {media_type} list: {list_name}")
        return await self._get_page(f"/{media_type}/{list_name}", {"page": page})

    async def popular_movies(self, page: int = 1) -> PagedResult:
        return await self.list_media("movie", "popular", page)

    async def top_rated_movies(self, page: int = 1) -> PagedResult:
        return await self.list_media("movie", "top_rated", page)

    async def upcoming_movies(self, page: int = 1) -> PagedResult:
        return await self.list_media("movie", "upcoming", page)

    async def now_playing_movies(self, page: int = 1) -> PagedResult:
        return await self.list_media("movie", "now_playing", page)

    async def popular_tv(self, page: int = 1) -> PagedResult:
        return await self.list_media("tv", "popular", page)

    async def top_rated_tv(self, page: int = 1) -> PagedResult:
        return await self.list_media("tv", "top_rated", page)

    async def tv_on_the_air(self, page: int = 1) -> PagedResult:
        return await self.list_media("tv", "on_the_air", page)

    async def tv_airing_today(self, page: int = 1) -> PagedResult:
        return await self.list_media("tv", "airing_today", page)

    async def trending(
        self,
        media_type: TrendingType = "all",
        time_window: TimeWindow = "week",
        page: int = 1,
    ) -> PagedResult:
        return await self._get_page(f"/trending/{media_type}/{time_window}", {"page": page})

    async def discover(
        self, media_type: MediaType, params: dict[str, Any] | None = None
    ) -> PagedResult:
        return await self._get_page(f"/discover/{media_type}", params or {})

    async def discover_by_genre(
        self, media_type: MediaType, genre_id: int, page: int = 1
    ) -> PagedResult:
        return await self.discover(
            media_type, {"with_genres": str(genre_id), "page": page}
        )

    async def media_by_genre(
        self, movie_genre_id: int, tv_genre_id: int, page: int = 1
    ) -> tuple[PagedResult, PagedResult]:
        """Discover movies and TV shows for a genre concurrently."""

        movies, shows = await asyncio.gather(
            self.discover_by_genre("movie", movie_genre_id, page),
            self.discover_by_genre("tv", tv_genre_id, page),
        )
        return movies, shows

    async def search(
        self, query: str, kind: SearchKind = "multi", page: int = 1
    ) -> PagedResult:
        """Search the catalog; a blank query returns an empty page locally."""

        cleaned = (query or "").strip()
        if not cleaned:
            return PagedResult.empty()
        return await self._get_page(
            f"/search/{kind}",
            {"query": cleaned, "page": page, "include_adult": "false"},
        )

    # Single titles ---------------------------------------------------------

    async def details(self, media_type: MediaType, media_id: int) -> dict[str, Any]:
        return await self._get(f"/{media_type}/{media_id}")

    async def credits(self, media_type: MediaType, media_id: int) -> dict[str, Any]:
        payload = await self._get(f"/{media_type}/{media_id}/credits")
        return {
            "cast": list(payload.get("cast") or []),
            "crew": list(payload.get("crew") or []),
        }

    async def videos(self, media_type: MediaType, media_id: int) -> list[dict[str, Any]]:
        payload = await self._get(f"/{media_type}/{media_id}/videos")
        return list(payload.get("results") or [])

    async def reviews(self, media_type: MediaType, media_id: int) -> list[dict[str, Any]]:
        payload = await self._get(f"/{media_type}/{media_id}/reviews")
        return list(payload.get("results") or [])

    async def similar(
        self, media_type: MediaType, media_id: int, page: int = 1
    ) -> list[dict[str, Any]]:
        result = await self._get_page(f"/{media_type}/{media_id}/similar", {"page": page})
        return result.results

    async def genres(self, media_type: MediaType) -> list[dict[str, Any]]:
        """Return the catalog's genre list; cached for the reference TTL."""

        payload = await self._get(
            f"/genre/{media_type}/list",
            ttl=self._settings.reference_cache_ttl,
        )
        return list(payload.get("genres") or [])

    async def dynamic(
        self, endpoint: str, params: dict[str, Any] | None = None
    ) -> Any:
        """Generic passthrough for any catalog endpoint."""

        path, merged = split_endpoint(endpoint, params)
        if not path:
            raise ValueError("Endpoint must not be empty")
        return await self._get(f"/{path}", merged)

    # Bulk helpers ----------------------------------------------------------

    async def media_page_data(self, media_type: MediaType, media_id: int) -> MediaPageData:
        details, videos, credits, similar, reviews = await asyncio.gather(
            self.details(media_type, media_id),
            self.videos(media_type, media_id),
            self.credits(media_type, media_id),
            self.similar(media_type, media_id),
            self.reviews(media_type, media_id),
        )
        return MediaPageData(
            details=details,
            videos=videos,
            credits=credits,
            similar=similar,
            reviews=reviews,
        )

    async def trending_content(
        self, time_window: TimeWindow = "week"
    ) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        movies, shows = await asyncio.gather(
            self.trending("movie", time_window),
            self.trending("tv", time_window),
        )
        return movies.results, shows.results

    async def trending_with_videos(
        self, media_type: MediaType = "movie", count: int = 5
    ) -> list[dict[str, Any]]:
        """Top weekly trending titles that have at least one video.

        Raises :class:`CatalogError` when the catalog has nothing trending.
        """

        result = await self.trending(media_type, "week")
        if not result.results:
            raise CatalogError(f"No trending {media_type} content found")
        return await self._attach_videos(
            [(media_type, item) for item in result.results[:count]]
        )

    async def mixed_trending_with_videos(self, count: int = 5) -> list[dict[str, Any]]:
        """Trending movies then shows (``ceil``/``floor`` halves of ``count``) with videos."""

        movies, shows = await self.trending_content("week")
        if not movies and not shows:
            raise CatalogError("No trending content found")
        picks: list[tuple[MediaType, dict[str, Any]]] = [
            *(("movie", item) for item in movies[: math.ceil(count / 2)]),
            *(("tv", item) for item in shows[: count // 2]),
        ]
        return await self._attach_videos(picks[:count])

    async def recent_releases(
        self,
        media_type: MediaType = "movie",
        limit: int = 10,
        *,
        today: date | None = None,
    ) -> list[dict[str, Any]]:
        """Titles released in the last 30 days, newest first, topped up from popular."""

        today = today or date.today()
        window_start = today - timedelta(days=RECENT_RELEASE_DAYS)
        date_field = "release_date" if media_type == "movie" else "first_air_date"
        try:
            current = await (
                self.now_playing_movies() if media_type == "movie" else self.tv_on_the_air()
            )
        except CatalogError as exc:
            logger.warning("Recent %s releases unavailable: %s", media_type, exc)
            return []

        dated: list[tuple[date, dict[str, Any]]] = []
        for item in current.results:
            released = _parse_date(item.get(date_field))
            if released is not None and window_start <= released <= today:
                dated.append((released, item))
        dated.sort(key=lambda pair: pair[0], reverse=True)
        releases = [item for _, item in dated]
        if len(releases) >= limit:
            return releases[:limit]

        try:
            popular = await (
                self.popular_movies() if media_type == "movie" else self.popular_tv()
            )
        except CatalogError as exc:
            logger.warning("Popular %s top-up unavailable: %s", media_type, exc)
            return releases
        seen = {item.get("id") for item in releases}
        for item in popular.results:
            if len(releases) >= limit:
                break
            if item.get("id") not in seen:
                seen.add(item.get("id"))
                releases.append(item)
        return releases

    async def recent_content(
        self, limit: int = 20, *, today: date | None = None
    ) -> list[dict[str, Any]]:
        """Recent movies and shows merged newest first, tagged with ``media_type``."""

        half = math.ceil(limit / 2)
        movies, shows = await asyncio.gather(
            self.recent_releases("movie", half, today=today),
            self.recent_releases("tv", half, today=today),
        )
        tagged = [{**item, "media_type": "movie"} for item in movies] + [
            {**item, "media_type": "tv"} for item in shows
        ]

        def _released(item: dict[str, Any]) -> date:
            return _parse_date(item.get("release_date") or item.get("first_air_date")) or date.min

        tagged.sort(key=_released, reverse=True)
        return tagged[:limit]

    async def _attach_videos(
        self, picks: list[tuple[MediaType, dict[str, Any]]]
    ) -> list[dict[str, Any]]:
        async def _with_videos(media_type: MediaType, item: dict[str, Any]) -> dict[str, Any]:
            try:
                videos = await self.videos(media_type, item["id"])
            except CatalogError as exc:
                logger.warning("Videos for %s %s unavailable: %s", media_type, item.get("id"), exc)
                videos = []
            return {**item, "media_type": media_type, "videos": videos}

        enriched = await asyncio.gather(
            *(_with_videos(media_type, item) for media_type, item in picks if "id" in item)
        )
        return [item for item in enriched if item["videos"]]

    async def fallback_recommendations(self, count: int = 12) -> list[dict[str, Any]]:
        """Return generic content: popular movies, else trending movies."""

        sources = (
            ("popular movies", self.popular_movies),
            ("trending movies", lambda: self.trending("movie", "week")),
        )
        for label, loader in sources:
            try:
                result = await loader()
            except CatalogError as exc:
                logger.warning("Fallback source %s unavailable: %s", label, exc)
                continue
            if result.results:
                return result.results[:count]
        return []

    # Transport -------------------------------------------------------------

    async def _get_page(self, endpoint: str, params: dict[str, Any]) -> PagedResult:
        payload = await self._get(endpoint, params)
        if not isinstance(payload, dict):
            raise CatalogError(f"Unexpected catalog payload for {endpoint}")
        try:
            return PagedResult.model_validate(payload)
        except ValidationError as exc:
            raise CatalogError(f"Malformed catalog page for {endpoint}") from exc

    async def _get(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        *,
        ttl: float | None = None,
    ) -> Any:
        cleaned = {key: value for key, value in (params or {}).items() if value is not None}
        cache_key = build_cache_key(endpoint, cleaned)
        cached = self._cache.get(cache_key)
        if cached is not None:
            # Callers may mutate results.
            return copy.deepcopy(cached)

        query: dict[str, Any] = {"language": self._settings.tmdb_language, **cleaned}
        query["api_key"] = self._settings.tmdb_api_key
        try:
            response = await self._client.get(endpoint, params=query)
        except httpx.HTTPError as exc:
            logger.warning(
                "Catalog request %s failed (%s): %s",
                endpoint,
                exc.__class__.__name__,
                exc,
            )
            raise CatalogError(f"Unable to reach the catalog for {endpoint}") from exc

        if response.status_code >= 400:
            logger.warning(
                "Catalog request %s returned %s: %s",
                endpoint,
                response.status_code,
                response.text,
            )
            raise CatalogError(
                f"Catalog request for {endpoint} failed with status {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise CatalogError(f"Catalog returned invalid JSON for {endpoint}") from exc

        self._cache.set(
            cache_key,
            copy.deepcopy(data),
            self._settings.catalog_cache_ttl if ttl is None else ttl,
        )
        return data
