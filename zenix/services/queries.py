"""Fetch-state controllers binding one logical catalog query to observable state."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Generic, Hashable, Sequence, TypeVar

from ..models import MediaType, PagedResult
from .tmdb import MediaPageData, SearchKind, TMDBClient, TimeWindow, TrendingType

logger = logging.getLogger(__name__)

T = TypeVar("T")
S = TypeVar("S")

PageFetcher = Callable[[int], Awaitable[PagedResult]]
ValueFetcher = Callable[[], Awaitable[T]]
Listener = Callable[[Any], None]

DEFAULT_ERROR_MESSAGE = "Failed to fetch data"


@dataclass(slots=True)
class QueryState:
    """Observable state of a paginated query."""

    data: list[dict[str, Any]] | None = None
    loading: bool = False
    error: str | None = None
    page: int = 1
    total_pages: int = 0
    has_more: bool = False


@dataclass(slots=True)
class ResourceState(Generic[T]):
    """Observable state of a single-resource query."""

    data: T | None = None
    loading: bool = False
    error: str | None = None


def describe_error(exc: BaseException) -> str:
    """Turn an exception into a message suitable for display."""

    message = str(exc).strip()
    return message or DEFAULT_ERROR_MESSAGE


class _BoundQuery(Generic[S]):
    """Shared cancellation and commit rules for fetch-state controllers.

    Each fetch runs as its own task. Issuing a new fetch cancels the previous
    task and bumps ``_generation``; a fetch may only commit state while its
    generation is still the latest, so a late response from a superseded
    request is discarded even if its fetcher ignored the cancellation.
    """

    def __init__(self, state: S, dependencies: Sequence[Hashable] = ()) -> None:
        self.state = state
        self._dependencies: tuple[Hashable, ...] = tuple(dependencies)
        self._generation = 0
        self._inflight: asyncio.Task[Any] | None = None
        self._listeners: list[Listener] = []
        self._started = False
        self._closed = False

    @property
    def dependencies(self) -> tuple[Hashable, ...]:
        return self._dependencies

    @property
    def closed(self) -> bool:
        return self._closed

    def snapshot(self) -> S:
        """Return a copy of the current state."""

        return replace(self.state)  # type: ignore[type-var]

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for state changes; returns an unsubscribe hook."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def close(self) -> None:
        """Cancel any in-flight request and stop committing state."""

        if self._closed:
            return
        self._closed = True
        task = self._cancel_inflight()
        self._listeners.clear()
        if task is not None:
            # Let the cancelled task unwind before the caller moves on.
            await asyncio.gather(task, return_exceptions=True)

    def _issue(self, factory: Callable[[], Awaitable[Any]]) -> tuple[int, asyncio.Task[Any]]:
        if self._closed:
            raise RuntimeError("Query has been closed")
        self._cancel_inflight()
        self._generation += 1

        async def _run() -> Any:
            return await factory()

        task = asyncio.ensure_future(_run())
        self._inflight = task
        return self._generation, task

    def _cancel_inflight(self) -> asyncio.Task[Any] | None:
        task = self._inflight
        self._inflight = None
        if task is not None and not task.done():
            task.cancel()
            return task
        return None

    def _is_current(self, generation: int) -> bool:
        return not self._closed and generation == self._generation

    async def _settle(self, generation: int, task: asyncio.Task[Any]) -> tuple[bool, Any]:
        """Await ``task`` and report whether its outcome may be committed.

        Returns ``(True, value)`` on a current success, ``(False, None)`` when
        the outcome was discarded or recorded as an error.
        """

        try:
            value = await task
        except asyncio.CancelledError:
            if not self._is_current(generation):
                logger.debug("Discarded cancelled fetch (generation %s)", generation)
                return False, None
            # The caller itself was cancelled; release the loading flag.
            self._inflight = None
            self._set_loading(False)
            raise
        except Exception as exc:
            if not self._is_current(generation):
                logger.debug("Discarded failure from superseded fetch: %s", exc)
                return False, None
            self._inflight = None
            logger.warning("Query fetch failed: %s", exc)
            self._record_error(describe_error(exc))
            return False, None

        if not self._is_current(generation):
            logger.debug("Discarded late response from superseded fetch")
            return False, None
        self._inflight = None
        return True, value

    def _set_loading(self, loading: bool) -> None:
        self.state.loading = loading  # type: ignore[attr-defined]
        self._notify()

    def _record_error(self, message: str) -> None:
        self.state.loading = False  # type: ignore[attr-defined]
        self.state.error = message  # type: ignore[attr-defined]
        self._notify()

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:  # pragma: no cover - listener bugs must not break fetches
                logger.exception("Query listener raised")


class PagedQuery(_BoundQuery[QueryState]):
    """Binds a paginated fetch function to a :class:`QueryState`.

    ``fetch(page)`` must return a :class:`PagedResult` (or a mapping with the
    same shape). Page 1 replaces the accumulated data, later pages append.
    """

    def __init__(self, fetch: PageFetcher, dependencies: Sequence[Hashable] = ()) -> None:
        super().__init__(QueryState(), dependencies)
        self._fetch = fetch

    async def start(self) -> None:
        """Load the first page for the current binding."""

        self._started = True
        await self._reset_and_load()

    async def rebind(self, fetch: PageFetcher, dependencies: Sequence[Hashable]) -> None:
        """Switch to a new query identity; unchanged dependencies are a no-op."""

        signature = tuple(dependencies)
        if self._started and signature == self._dependencies:
            return
        self._fetch = fetch
        self._dependencies = signature
        self._started = True
        await self._reset_and_load()

    async def load_more(self) -> None:
        """Append the next page unless nothing is left or a fetch is running."""

        if not self.state.has_more or self.state.loading:
            return
        await self._load(self.state.page + 1)

    async def refetch(self) -> None:
        """Reload page 1 and replace the accumulated data."""

        self._started = True
        await self._reset_and_load()

    async def _reset_and_load(self) -> None:
        # Nothing to append to until page 1 of this binding commits.
        self.state.page = 1
        self.state.total_pages = 0
        self.state.has_more = False
        self.state.error = None
        await self._load(1)

    async def _load(self, page: int) -> None:
        fetch = self._fetch
        generation, task = self._issue(lambda: fetch(page))
        self._set_loading(True)

        committed, payload = await self._settle(generation, task)
        if not committed:
            return

        result = (
            payload
            if isinstance(payload, PagedResult)
            else PagedResult.model_validate(payload)
        )
        results = list(result.results)
        if page > 1 and self.state.data is not None:
            self.state.data = [*self.state.data, *results]
        else:
            self.state.data = results
        self.state.page = page
        self.state.total_pages = result.total_pages
        self.state.has_more = page < result.total_pages
        self.state.error = None
        self.state.loading = False
        self._notify()


class ResourceQuery(_BoundQuery[ResourceState[T]]):
    """Binds a single-value fetch function to a :class:`ResourceState`."""

    def __init__(self, fetch: ValueFetcher[T], dependencies: Sequence[Hashable] = ()) -> None:
        super().__init__(ResourceState(), dependencies)
        self._fetch = fetch

    async def start(self) -> None:
        self._started = True
        await self._load()

    async def rebind(self, fetch: ValueFetcher[T], dependencies: Sequence[Hashable]) -> None:
        signature = tuple(dependencies)
        if self._started and signature == self._dependencies:
            return
        self._fetch = fetch
        self._dependencies = signature
        self._started = True
        await self._load()

    async def refetch(self) -> None:
        self._started = True
        await self._load()

    async def _load(self) -> None:
        self.state.error = None
        generation, task = self._issue(self._fetch)
        self._set_loading(True)

        committed, value = await self._settle(generation, task)
        if not committed:
            return
        self.state.data = value
        self.state.loading = False
        self._notify()


# Query factories -----------------------------------------------------------


def popular_movies_query(client: TMDBClient) -> PagedQuery:
    return PagedQuery(client.popular_movies, ("movie", "popular"))


def top_rated_movies_query(client: TMDBClient) -> PagedQuery:
    return PagedQuery(client.top_rated_movies, ("movie", "top_rated"))


def popular_tv_query(client: TMDBClient) -> PagedQuery:
    return PagedQuery(client.popular_tv, ("tv", "popular"))


def top_rated_tv_query(client: TMDBClient) -> PagedQuery:
    return PagedQuery(client.top_rated_tv, ("tv", "top_rated"))


def trending_query(
    client: TMDBClient,
    media_type: TrendingType = "movie",
    time_window: TimeWindow = "week",
) -> PagedQuery:
    async def _fetch(page: int) -> PagedResult:
        return await client.trending(media_type, time_window, page)

    return PagedQuery(_fetch, ("trending", media_type, time_window))


def genre_fetcher(
    client: TMDBClient, media_type: MediaType, genre_id: int | None
) -> PageFetcher:
    async def _fetch(page: int) -> PagedResult:
        if not genre_id:
            raise ValueError("No genre ID")
        return await client.discover_by_genre(media_type, genre_id, page)

    return _fetch


def genre_query(
    client: TMDBClient, media_type: MediaType, genre_id: int | None
) -> PagedQuery:
    return PagedQuery(
        genre_fetcher(client, media_type, genre_id),
        ("genre", media_type, genre_id),
    )


def search_fetcher(client: TMDBClient, query: str, kind: SearchKind = "multi") -> PageFetcher:
    async def _fetch(page: int) -> PagedResult:
        return await client.search(query, kind, page)

    return _fetch


def search_query(client: TMDBClient, query: str, kind: SearchKind = "multi") -> PagedQuery:
    return PagedQuery(search_fetcher(client, query, kind), ("search", query, kind))


async def update_search(
    search: PagedQuery, client: TMDBClient, query: str, kind: SearchKind = "multi"
) -> None:
    """Point an existing search query at new terms."""

    await search.rebind(search_fetcher(client, query, kind), ("search", query, kind))


def details_query(
    client: TMDBClient, media_type: MediaType, media_id: int
) -> ResourceQuery[dict[str, Any]]:
    async def _fetch() -> dict[str, Any]:
        return await client.details(media_type, media_id)

    return ResourceQuery(_fetch, ("details", media_type, media_id))


def media_page_query(
    client: TMDBClient, media_type: MediaType, media_id: int
) -> ResourceQuery[MediaPageData]:
    async def _fetch() -> MediaPageData:
        return await client.media_page_data(media_type, media_id)

    return ResourceQuery(_fetch, ("media-page", media_type, media_id))


def genres_query(client: TMDBClient, media_type: MediaType) -> ResourceQuery[list[dict[str, Any]]]:
    async def _fetch() -> list[dict[str, Any]]:
        return await client.genres(media_type)

    return ResourceQuery(_fetch, ("genres", media_type))
