"""Tracked-list gateways backed by SQLite and by the user-profile HTTP API."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

import httpx
import pytest

from zenix.database import Database
from zenix.models import TrackedItem
from zenix.services.tracked_lists import (
    HttpTrackedListGateway,
    SqlTrackedListGateway,
    TrackedListGateway,
    TrackedLists,
)


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


@asynccontextmanager
async def open_database(tmp_path: Path) -> AsyncIterator[Database]:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'tracked.db'}")
    await database.create_all()
    try:
        yield database
    finally:
        await database.dispose()


def item(media_id: int, media_type: str = "movie", **extra: Any) -> TrackedItem:
    return TrackedItem(media_id=media_id, media_type=media_type, title=f"Title {media_id}", **extra)


@pytest.mark.anyio("asyncio")
async def test_favorites_reject_duplicates(tmp_path: Path) -> None:
    async with open_database(tmp_path) as database:
        favorites = SqlTrackedListGateway("favorites", database.session_factory, "user-1")

        first = await favorites.add(item(603))
        second = await favorites.add(item(603))
        listing = await favorites.list()

    assert first.success
    assert not second.success
    assert second.already_present
    assert second.message == "Item already in favorites"
    assert listing.data is not None
    assert listing.data.total == 1


@pytest.mark.anyio("asyncio")
async def test_same_id_with_other_media_type_is_a_different_item(tmp_path: Path) -> None:
    async with open_database(tmp_path) as database:
        watchlist = SqlTrackedListGateway("watchlist", database.session_factory, "user-1")

        await watchlist.add(item(1399, "movie"))
        response = await watchlist.add(item(1399, "tv"))
        listing = await watchlist.list()

    assert response.success
    assert listing.data is not None
    assert listing.data.total == 2


@pytest.mark.anyio("asyncio")
async def test_list_is_paged_newest_first(tmp_path: Path) -> None:
    async with open_database(tmp_path) as database:
        favorites = SqlTrackedListGateway("favorites", database.session_factory, "user-1")
        for media_id in (1, 2, 3):
            await favorites.add(item(media_id))

        first_page = await favorites.list(page=1, limit=2)
        second_page = await favorites.list(page=2, limit=2)

    assert first_page.data is not None and second_page.data is not None
    assert [entry.media_id for entry in first_page.data.items] == [3, 2]
    assert [entry.media_id for entry in second_page.data.items] == [1]
    assert first_page.data.total == 3
    assert first_page.data.limit == 2


@pytest.mark.anyio("asyncio")
async def test_remove_and_contains(tmp_path: Path) -> None:
    async with open_database(tmp_path) as database:
        watchlist = SqlTrackedListGateway("watchlist", database.session_factory, "user-1")
        await watchlist.add(item(550))

        assert await watchlist.contains(550, "movie")
        removed = await watchlist.remove(550, "movie")
        missing = await watchlist.remove(550, "movie")
        still_there = await watchlist.contains(550, "movie")

    assert removed.success
    assert missing.code == "not_found"
    assert not still_there


@pytest.mark.anyio("asyncio")
async def test_lists_are_scoped_per_user_and_kind(tmp_path: Path) -> None:
    async with open_database(tmp_path) as database:
        mine = SqlTrackedListGateway("favorites", database.session_factory, "user-1")
        theirs = SqlTrackedListGateway("favorites", database.session_factory, "user-2")
        my_watchlist = SqlTrackedListGateway("watchlist", database.session_factory, "user-1")

        await mine.add(item(10))
        theirs_response = await theirs.add(item(10))
        watchlist_response = await my_watchlist.add(item(10))

    assert theirs_response.success
    assert watchlist_response.success


@pytest.mark.anyio("asyncio")
async def test_recent_watch_is_moved_to_front(tmp_path: Path) -> None:
    async with open_database(tmp_path) as database:
        recent = SqlTrackedListGateway("recent-watches", database.session_factory, "user-1")
        await recent.add(item(1))
        await recent.add(item(2))
        again = await recent.add(item(1, progress=40))
        listing = await recent.list()

    assert again.success
    assert listing.data is not None
    assert [entry.media_id for entry in listing.data.items] == [1, 2]
    assert listing.data.items[0].progress == 40
    assert listing.data.items[0].watched_at is not None


@pytest.mark.anyio("asyncio")
async def test_recent_watches_are_capped(tmp_path: Path) -> None:
    async with open_database(tmp_path) as database:
        recent = SqlTrackedListGateway(
            "recent-watches", database.session_factory, "user-1", recent_limit=3
        )
        for media_id in range(1, 6):
            await recent.add(item(media_id))
        listing = await recent.list()

    assert listing.data is not None
    assert listing.data.total == 3
    assert [entry.media_id for entry in listing.data.items] == [5, 4, 3]


@pytest.mark.anyio("asyncio")
async def test_clear_only_applies_to_recent_watches(tmp_path: Path) -> None:
    async with open_database(tmp_path) as database:
        favorites = SqlTrackedListGateway("favorites", database.session_factory, "user-1")
        recent = SqlTrackedListGateway("recent-watches", database.session_factory, "user-1")
        await recent.add(item(1))

        refused = await favorites.clear()
        cleared = await recent.clear()
        not_removable = await recent.remove(1, "movie")
        listing = await recent.list()

    assert refused.code == "unsupported"
    assert cleared.success
    assert not_removable.code == "unsupported"
    assert listing.data is not None
    assert listing.data.total == 0


@pytest.mark.anyio("asyncio")
async def test_snapshot_collects_every_list(tmp_path: Path) -> None:
    async with open_database(tmp_path) as database:
        factory = database.session_factory
        lists = TrackedLists(
            SqlTrackedListGateway("favorites", factory, "user-1"),
            SqlTrackedListGateway("watchlist", factory, "user-1"),
            SqlTrackedListGateway("recent-watches", factory, "user-1"),
        )
        await lists.favorites.add(item(1, genres=["Horror", "Drama"]))
        await lists.watchlist.add(item(2, "tv"))
        await lists.recent_watches.add(item(3))

        signal = await lists.snapshot(["Horror", ""])
        found = await lists.contains("watchlist", 2, "tv")

    assert [entry.genres for entry in signal.favorites] == [["Horror", "Drama"]]
    assert signal.tracked_keys() == {("movie", 1), ("tv", 2), ("movie", 3)}
    assert signal.explicit_genres == ["Horror"]
    assert found


def test_gateways_satisfy_protocol() -> None:
    client = httpx.AsyncClient(base_url="https://user.example.com")
    assert isinstance(HttpTrackedListGateway("favorites", client), TrackedListGateway)
    with pytest.raises(ValueError):
        HttpTrackedListGateway("history", client)  # type: ignore[arg-type]


# HTTP gateway --------------------------------------------------------------


def store_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://user.example.com/api/user"
    )


@pytest.mark.anyio("asyncio")
async def test_http_add_posts_camel_case_payload() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(
            200,
            json={
                "success": True,
                "message": "Added to favorites successfully",
                "data": {"favorites": [{"mediaId": 603, "mediaType": "movie", "title": "The Matrix"}]},
            },
        )

    async with store_client(handler) as client:
        gateway = HttpTrackedListGateway("favorites", client)
        response = await gateway.add(item(603, posterPath="/m.jpg"))

    assert response.success
    assert [entry.media_id for entry in response.data] == [603]
    assert captured[0].method == "POST"
    assert captured[0].url.path == "/api/user/favorites"
    assert json.loads(captured[0].content) == {
        "mediaId": 603,
        "mediaType": "movie",
        "title": "Title 603",
        "posterPath": "/m.jpg",
    }


@pytest.mark.anyio("asyncio")
async def test_http_conflict_maps_to_already_present() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"success": False, "message": "Item already in favorites"})

    async with store_client(handler) as client:
        response = await HttpTrackedListGateway("favorites", client).add(item(1))

    assert not response.success
    assert response.already_present
    assert response.message == "Item already in favorites"


@pytest.mark.anyio("asyncio")
async def test_http_remove_sends_key_as_query() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(404, json={"success": False, "message": "Item not found"})

    async with store_client(handler) as client:
        response = await HttpTrackedListGateway("watchlist", client).remove(42, "tv")

    assert response.code == "not_found"
    assert captured[0].method == "DELETE"
    assert captured[0].url.params["mediaId"] == "42"
    assert captured[0].url.params["mediaType"] == "tv"


@pytest.mark.anyio("asyncio")
async def test_http_list_sorts_and_pages_locally() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "success": True,
                "data": {
                    "recentWatches": [
                        {"mediaId": 1, "mediaType": "movie", "watchedAt": "2024-01-01T00:00:00Z"},
                        {"mediaId": 2, "mediaType": "tv", "watchedAt": "2024-03-01T00:00:00Z"},
                        {"mediaId": 3, "mediaType": "movie", "watchedAt": "2024-02-01T00:00:00Z"},
                        {"unexpected": True},
                    ]
                },
            },
        )

    async with store_client(handler) as client:
        gateway = HttpTrackedListGateway("recent-watches", client)
        response = await gateway.list(page=1, limit=2)
        found = await gateway.contains(3, "movie")

    assert response.data is not None
    assert [entry.media_id for entry in response.data.items] == [2, 3]
    assert response.data.total == 3
    assert found


@pytest.mark.anyio("asyncio")
async def test_http_transport_and_body_failures_do_not_raise() -> None:
    def broken(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    def garbage(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="<html>bad gateway</html>")

    async with store_client(broken) as client:
        offline = await HttpTrackedListGateway("watchlist", client).list()
    async with store_client(garbage) as client:
        invalid = await HttpTrackedListGateway("watchlist", client).add(item(1))

    assert not offline.success
    assert offline.code == "transport_error"
    assert offline.message == "Failed to fetch watchlist"
    assert not invalid.success
    assert invalid.code == "invalid_response"


@pytest.mark.anyio("asyncio")
async def test_snapshot_treats_unreadable_list_as_empty() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/watchlist"):
            return httpx.Response(500, json={"success": False, "message": "Server error"})
        key = "favorites" if request.url.path.endswith("/favorites") else "recentWatches"
        return httpx.Response(
            200,
            json={"success": True, "data": {key: [{"mediaId": 7, "mediaType": "movie", "genres": ["Drama"]}]}},
        )

    async with store_client(handler) as client:
        lists = TrackedLists(
            HttpTrackedListGateway("favorites", client),
            HttpTrackedListGateway("watchlist", client),
            HttpTrackedListGateway("recent-watches", client),
        )
        signal = await lists.snapshot()

    assert len(signal.favorites) == 1
    assert signal.watchlist == []
    assert len(signal.recent_watches) == 1
