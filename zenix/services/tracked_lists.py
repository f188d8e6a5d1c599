"""Gateways for the user's favorites, watchlist and recent watches."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Iterable, Protocol, runtime_checkable

import httpx
from pydantic import ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import TrackedItemRecord
from ..models import (
    ApiResponse,
    ListKind,
    MediaType,
    TrackedItem,
    TrackedPage,
    UserSignal,
    ensure_utc,
    utcnow,
)

logger = logging.getLogger(__name__)

DEFAULT_RECENT_WATCHES_LIMIT = 50

LIST_LABELS: dict[str, str] = {
    "favorites": "favorites",
    "watchlist": "watchlist",
    "recent-watches": "recent watches",
}

# Keys the user-profile store nests list contents under.
PAYLOAD_KEYS: dict[str, str] = {
    "favorites": "favorites",
    "watchlist": "watchlist",
    "recent-watches": "recentWatches",
}


@runtime_checkable
class TrackedListGateway(Protocol):
    """Read/write access to one tracked list keyed by ``(media_id, media_type)``."""

    kind: ListKind

    async def add(self, item: TrackedItem) -> ApiResponse[Any]: ...

    async def remove(self, media_id: int, media_type: MediaType) -> ApiResponse[Any]: ...

    async def list(self, page: int = 1, limit: int = 20) -> ApiResponse[TrackedPage]: ...

    async def clear(self) -> ApiResponse[Any]: ...

    async def contains(self, media_id: int, media_type: MediaType) -> bool: ...


def _sort_key(item: TrackedItem) -> datetime:
    stamp = item.watched_at or item.added_at
    return ensure_utc(stamp)  # type: ignore[return-value]


def paginate(
    items: Iterable[TrackedItem], page: int, limit: int
) -> TrackedPage:
    """Return one newest-first page from an unordered list of items."""

    page = max(1, int(page))
    limit = max(1, int(limit))
    ordered = sorted(items, key=_sort_key, reverse=True)
    start = (page - 1) * limit
    return TrackedPage(
        items=ordered[start : start + limit],
        page=page,
        limit=limit,
        total=len(ordered),
    )


def _failure(message: str, code: str) -> ApiResponse[Any]:
    return ApiResponse(success=False, message=message, code=code)


class HttpTrackedListGateway:
    """Tracked list backed by the external user-profile HTTP API.

    The store answers with ``{success, message, data}`` envelopes. Transport
    errors and malformed bodies are folded into ``success=False`` responses so
    callers never need to catch exceptions.
    """

    def __init__(self, kind: ListKind, http_client: httpx.AsyncClient) -> None:
        if kind not in PAYLOAD_KEYS:
            raise ValueError(f"Unknown tracked list: {kind}")
        self.kind: ListKind = kind
        self._client = http_client
        self._path = f"/{kind}"
        self._label = LIST_LABELS[kind]

    async def add(self, item: TrackedItem) -> ApiResponse[Any]:
        response = await self._request(
            "POST", json=item.to_payload(), action=f"add to {self._label}"
        )
        return self._with_items(response)

    async def remove(self, media_id: int, media_type: MediaType) -> ApiResponse[Any]:
        if self.kind == "recent-watches":
            return _failure("Cannot remove from recent watches", "unsupported")
        response = await self._request(
            "DELETE",
            params={"mediaId": media_id, "mediaType": media_type},
            action=f"remove from {self._label}",
        )
        return self._with_items(response)

    async def list(self, page: int = 1, limit: int = 20) -> ApiResponse[TrackedPage]:
        response = await self._request("GET", action=f"fetch {self._label}")
        if not response.success:
            return ApiResponse[TrackedPage](
                success=False, message=response.message, code=response.code
            )
        items = self._extract_items(response.data)
        return ApiResponse[TrackedPage](
            success=True,
            message=response.message,
            data=paginate(items, page, limit),
        )

    async def clear(self) -> ApiResponse[Any]:
        if self.kind != "recent-watches":
            return _failure(f"Cannot clear {self._label}", "unsupported")
        return await self._request("DELETE", action=f"clear {self._label}")

    async def contains(self, media_id: int, media_type: MediaType) -> bool:
        response = await self._request("GET", action=f"fetch {self._label}")
        if not response.success:
            return False
        return any(
            item.key == (media_type, media_id)
            for item in self._extract_items(response.data)
        )

    async def _request(
        self,
        method: str,
        *,
        action: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> ApiResponse[Any]:
        fallback_message = f"Failed to {action}"
        try:
            response = await self._client.request(
                method, self._path, params=params, json=json
            )
        except httpx.HTTPError as exc:
            logger.warning("User store request to %s failed: %s", self._path, exc)
            return _failure(fallback_message, "transport_error")

        try:
            body = response.json()
        except ValueError:
            logger.warning(
                "User store returned non-JSON for %s (%s)", self._path, response.status_code
            )
            return _failure(fallback_message, "invalid_response")
        if not isinstance(body, dict):
            return _failure(fallback_message, "invalid_response")

        message = str(body.get("message") or "")
        success = bool(body.get("success")) and response.status_code < 400
        if success:
            return ApiResponse(success=True, message=message, data=body.get("data"))
        return ApiResponse(
            success=False,
            message=message or fallback_message,
            data=body.get("data"),
            code=self._classify_failure(response.status_code, message),
        )

    @staticmethod
    def _classify_failure(status_code: int, message: str) -> str:
        lowered = message.lower()
        if status_code == 409 or "already" in lowered:
            return "already_present"
        if status_code == 404 or "not found" in lowered:
            return "not_found"
        if status_code in (401, 403):
            return "unauthenticated"
        if status_code == 400:
            return "invalid_request"
        return "error"

    def _with_items(self, response: ApiResponse[Any]) -> ApiResponse[Any]:
        if response.data is None:
            return response
        return response.model_copy(update={"data": self._extract_items(response.data)})

    def _extract_items(self, data: Any) -> list[TrackedItem]:
        if isinstance(data, dict):
            data = data.get(PAYLOAD_KEYS[self.kind]) or data.get("items") or []
        if not isinstance(data, list):
            return []
        items: list[TrackedItem] = []
        for entry in data:
            if not isinstance(entry, dict):
                continue
            try:
                items.append(TrackedItem.model_validate(entry))
            except ValidationError as exc:
                logger.debug("Skipping malformed %s entry: %s", self._label, exc)
        return items


class SqlTrackedListGateway:
    """Tracked list stored in the local SQLAlchemy database."""

    def __init__(
        self,
        kind: ListKind,
        session_factory: async_sessionmaker[AsyncSession],
        user_id: str,
        *,
        recent_limit: int = DEFAULT_RECENT_WATCHES_LIMIT,
    ) -> None:
        if kind not in PAYLOAD_KEYS:
            raise ValueError(f"Unknown tracked list: {kind}")
        self.kind: ListKind = kind
        self._session_factory = session_factory
        self._user_id = user_id
        self._recent_limit = max(1, recent_limit)
        self._label = LIST_LABELS[kind]

    async def add(self, item: TrackedItem) -> ApiResponse[Any]:
        try:
            async with self._session_factory() as session:
                existing = await session.scalar(self._key_query(item.media_id, item.media_type))
                if self.kind == "recent-watches":
                    if existing is not None:
                        await session.delete(existing)
                        await session.flush()
                    session.add(self._record(item, watched=True))
                    await session.flush()
                    await self._trim_recent(session)
                    await session.commit()
                    return ApiResponse(success=True, message="Recent watch updated successfully")

                if existing is not None:
                    return _failure(f"Item already in {self._label}", "already_present")
                session.add(self._record(item))
                await session.commit()
        except IntegrityError:
            return _failure(f"Item already in {self._label}", "already_present")
        except SQLAlchemyError:
            logger.exception("Failed to add %s to %s", item.key, self._label)
            return _failure(f"Failed to add to {self._label}", "error")
        return ApiResponse(success=True, message=f"Added to {self._label} successfully")

    async def remove(self, media_id: int, media_type: MediaType) -> ApiResponse[Any]:
        if self.kind == "recent-watches":
            return _failure("Cannot remove from recent watches", "unsupported")
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(TrackedItemRecord).where(*self._key_filter(media_id, media_type))
                )
                await session.commit()
        except SQLAlchemyError:
            logger.exception("Failed to remove %s/%s from %s", media_type, media_id, self._label)
            return _failure(f"Failed to remove from {self._label}", "error")
        if not result.rowcount:
            return _failure(f"Item not found in {self._label}", "not_found")
        return ApiResponse(success=True, message=f"Removed from {self._label} successfully")

    async def list(self, page: int = 1, limit: int = 20) -> ApiResponse[TrackedPage]:
        page = max(1, int(page))
        limit = max(1, int(limit))
        try:
            async with self._session_factory() as session:
                total = await session.scalar(
                    select(func.count()).select_from(TrackedItemRecord).where(*self._list_filter())
                )
                records = (
                    await session.scalars(
                        select(TrackedItemRecord)
                        .where(*self._list_filter())
                        .order_by(*self._ordering())
                        .offset((page - 1) * limit)
                        .limit(limit)
                    )
                ).all()
        except SQLAlchemyError:
            logger.exception("Failed to list %s", self._label)
            return ApiResponse[TrackedPage](
                success=False, message=f"Failed to fetch {self._label}", code="error"
            )
        return ApiResponse[TrackedPage](
            success=True,
            message=f"Fetched {self._label}",
            data=TrackedPage(
                items=[record.to_item() for record in records],
                page=page,
                limit=limit,
                total=int(total or 0),
            ),
        )

    async def clear(self) -> ApiResponse[Any]:
        if self.kind != "recent-watches":
            return _failure(f"Cannot clear {self._label}", "unsupported")
        try:
            async with self._session_factory() as session:
                await session.execute(delete(TrackedItemRecord).where(*self._list_filter()))
                await session.commit()
        except SQLAlchemyError:
            logger.exception("Failed to clear %s", self._label)
            return _failure(f"Failed to clear {self._label}", "error")
        return ApiResponse(success=True, message="Recent watches cleared successfully")

    async def contains(self, media_id: int, media_type: MediaType) -> bool:
        try:
            async with self._session_factory() as session:
                found = await session.scalar(
                    select(TrackedItemRecord.id).where(*self._key_filter(media_id, media_type))
                )
        except SQLAlchemyError:
            logger.exception("Failed to look up %s/%s in %s", media_type, media_id, self._label)
            return False
        return found is not None

    def _list_filter(self) -> tuple[Any, ...]:
        return (
            TrackedItemRecord.user_id == self._user_id,
            TrackedItemRecord.list_kind == self.kind,
        )

    def _key_filter(self, media_id: int, media_type: str) -> tuple[Any, ...]:
        return (
            *self._list_filter(),
            TrackedItemRecord.media_id == media_id,
            TrackedItemRecord.media_type == media_type,
        )

    def _key_query(self, media_id: int, media_type: str):
        return select(TrackedItemRecord).where(*self._key_filter(media_id, media_type))

    def _ordering(self) -> tuple[Any, ...]:
        if self.kind == "recent-watches":
            return (TrackedItemRecord.watched_at.desc(), TrackedItemRecord.id.desc())
        return (TrackedItemRecord.added_at.desc(), TrackedItemRecord.id.desc())

    def _record(self, item: TrackedItem, *, watched: bool = False) -> TrackedItemRecord:
        now = utcnow()
        return TrackedItemRecord(
            user_id=self._user_id,
            list_kind=self.kind,
            media_id=item.media_id,
            media_type=item.media_type,
            title=item.title,
            poster_path=item.poster_path,
            progress=(item.progress or 0) if watched else item.progress,
            season=item.season,
            episode=item.episode,
            genres=list(item.genres),
            added_at=now,
            watched_at=now if watched else None,
        )

    async def _trim_recent(self, session: AsyncSession) -> None:
        stale_ids = (
            await session.scalars(
                select(TrackedItemRecord.id)
                .where(*self._list_filter())
                .order_by(*self._ordering())
                .offset(self._recent_limit)
            )
        ).all()
        if stale_ids:
            await session.execute(
                delete(TrackedItemRecord).where(TrackedItemRecord.id.in_(stale_ids))
            )


class TrackedLists:
    """The three tracked lists of one user, read together into a signal."""

    def __init__(
        self,
        favorites: TrackedListGateway,
        watchlist: TrackedListGateway,
        recent_watches: TrackedListGateway,
    ) -> None:
        self.favorites = favorites
        self.watchlist = watchlist
        self.recent_watches = recent_watches

    def gateway(self, kind: ListKind) -> TrackedListGateway:
        mapping: dict[str, TrackedListGateway] = {
            "favorites": self.favorites,
            "watchlist": self.watchlist,
            "recent-watches": self.recent_watches,
        }
        try:
            return mapping[kind]
        except KeyError as exc:
            raise ValueError(f"Unknown tracked list: {kind}") from exc

    async def contains(self, kind: ListKind, media_id: int, media_type: MediaType) -> bool:
        return await self.gateway(kind).contains(media_id, media_type)

    async def snapshot(self, explicit_genres: Iterable[str] = ()) -> UserSignal:
        """Read every list (uncached) and assemble a :class:`UserSignal`."""

        favorites, watchlist, recent = await asyncio.gather(
            self._all_items(self.favorites),
            self._all_items(self.watchlist),
            self._all_items(self.recent_watches),
        )
        return UserSignal(
            favorites=favorites,
            watchlist=watchlist,
            recent_watches=recent,
            explicit_genres=[genre for genre in explicit_genres if genre],
        )

    @staticmethod
    async def _all_items(
        gateway: TrackedListGateway, *, page_size: int = 100
    ) -> list[TrackedItem]:
        collected: list[TrackedItem] = []
        page = 1
        while True:
            response = await gateway.list(page=page, limit=page_size)
            if not response.success or response.data is None:
                logger.warning(
                    "Could not read %s: %s", gateway.kind, response.message or "unknown error"
                )
                return collected
            collected.extend(response.data.items)
            if not response.data.items or len(collected) >= response.data.total:
                return collected
            page += 1
