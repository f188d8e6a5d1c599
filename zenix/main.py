"""Session wiring: settings, HTTP clients, cache, gateways and engine."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator

import httpx

from .cache import FetchCache
from .config import Settings, get_settings
from .database import Database
from .models import ListKind, RecommendationCandidate
from .services.recommendations import RecommendationEngine, recommend_or_fallback
from .services.tmdb import TMDBClient
from .services.tracked_lists import (
    HttpTrackedListGateway,
    SqlTrackedListGateway,
    TrackedLists,
)

logger = logging.getLogger(__name__)

_KINDS: tuple[ListKind, ...] = ("favorites", "watchlist", "recent-watches")


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))


@dataclass(slots=True)
class ZenixSession:
    """Everything a client needs for one signed-in user."""

    settings: Settings
    cache: FetchCache
    catalog: TMDBClient
    tracked_lists: TrackedLists
    engine: RecommendationEngine

    async def recommendations(
        self, explicit_genres: tuple[str, ...] = ()
    ) -> tuple[list[RecommendationCandidate], list[dict[str, Any]]]:
        """Snapshot the lists and return ``(ranked, fallback)``."""

        signal = await self.tracked_lists.snapshot(explicit_genres)
        return await recommend_or_fallback(
            self.engine,
            self.catalog,
            signal,
            limit=self.settings.recommendation_limit,
            fallback_count=self.settings.fallback_count,
        )


@asynccontextmanager
async def create_session(
    settings: Settings | None = None,
    *,
    auth_token: str | None = None,
    user_id: str | None = None,
    database: Database | None = None,
    cache: FetchCache | None = None,
) -> AsyncIterator[ZenixSession]:
    """Build a :class:`ZenixSession` and close its resources on exit.

    With ``user_id`` the tracked lists live in the local database (``database``
    or one opened from ``DATABASE_URL``); otherwise they go through the
    user-profile HTTP API authenticated by ``auth_token``.
    """

    if settings is None:
        settings = get_settings()
    configure_logging(settings)

    async with AsyncExitStack() as exit_stack:
        catalog_http = await exit_stack.enter_async_context(
            httpx.AsyncClient(
                base_url=str(settings.tmdb_api_url),
                timeout=httpx.Timeout(15.0, connect=5.0),
            )
        )
        if cache is None:
            cache = FetchCache(default_ttl=settings.catalog_cache_ttl)
        catalog = TMDBClient(settings, catalog_http, cache)

        if user_id is not None:
            if database is None:
                database = Database(settings.database_url)
                exit_stack.push_async_callback(database.dispose)
            await database.create_all()
            gateways = [
                SqlTrackedListGateway(
                    kind,
                    database.session_factory,
                    user_id,
                    recent_limit=settings.recent_watches_limit,
                )
                for kind in _KINDS
            ]
        else:
            headers = {"Authorization": f"Bearer {auth_token}"} if auth_token else {}
            user_http = await exit_stack.enter_async_context(
                httpx.AsyncClient(
                    base_url=str(settings.user_api_url),
                    headers=headers,
                    timeout=httpx.Timeout(10.0, connect=5.0),
                )
            )
            gateways = [HttpTrackedListGateway(kind, user_http) for kind in _KINDS]

        session = ZenixSession(
            settings=settings,
            cache=cache,
            catalog=catalog,
            tracked_lists=TrackedLists(*gateways),
            engine=RecommendationEngine(
                catalog, default_limit=settings.recommendation_limit
            ),
        )
        logger.info(
            "Started %s session (%s tracked lists)",
            settings.app_name,
            "local" if user_id is not None else "remote",
        )
        yield session
