"""Session wiring tests."""

from __future__ import annotations

from typing import Any

import pytest

from zenix.cache import FetchCache
from zenix.config import Settings
from zenix.database import Database
from zenix.main import create_session
from zenix.models import TrackedItem
from zenix.services.tracked_lists import (
    HttpTrackedListGateway,
    SqlTrackedListGateway,
    TrackedLists,
)


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def build_settings(**overrides: Any) -> Settings:
    base = {"TMDB_API_KEY": "test-key", "RECENT_WATCHES_LIMIT": 7}
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


@pytest.mark.anyio("asyncio")
async def test_local_session_uses_database_gateways(tmp_path) -> None:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'session.db'}")
    try:
        async with create_session(build_settings(), user_id="user-1", database=database) as session:
            favorites = session.tracked_lists.gateway("favorites")
            assert isinstance(favorites, SqlTrackedListGateway)

            await favorites.add(TrackedItem(media_id=1, media_type="movie", genres=["Drama"]))
            signal = await session.tracked_lists.snapshot(["Horror"])
    finally:
        await database.dispose()

    assert [item.media_id for item in signal.favorites] == [1]
    assert signal.explicit_genres == ["Horror"]


@pytest.mark.anyio("asyncio")
async def test_remote_session_shares_injected_cache() -> None:
    cache = FetchCache(default_ttl=60)
    async with create_session(build_settings(), auth_token="secret", cache=cache) as session:
        watchlist = session.tracked_lists.gateway("watchlist")

        assert isinstance(watchlist, HttpTrackedListGateway)
        assert session.cache is cache
        assert session.catalog.cache is cache
        assert session.engine.strategies


def test_unknown_list_kind_is_rejected() -> None:
    lists = TrackedLists(None, None, None)  # type: ignore[arg-type]
    with pytest.raises(ValueError):
        lists.gateway("history")  # type: ignore[arg-type]
