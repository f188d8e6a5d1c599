"""Pydantic models shared by the catalog, tracked-list and recommendation layers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Generic, Literal, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

MediaType = Literal["movie", "tv"]
ListKind = Literal["favorites", "watchlist", "recent-watches"]

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive timestamps (SQLite drops the offset)."""

    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class TrackedItem(BaseModel):
    """A media reference stored in one of the user's tracked lists."""

    model_config = ConfigDict(populate_by_name=True)

    media_id: int = Field(validation_alias=AliasChoices("media_id", "mediaId", "id"))
    media_type: MediaType = Field(
        validation_alias=AliasChoices("media_type", "mediaType", "type")
    )
    title: str = Field(
        default="",
        validation_alias=AliasChoices("title", "name"),
    )
    poster_path: str | None = Field(
        default=None, validation_alias=AliasChoices("poster_path", "posterPath")
    )
    added_at: datetime = Field(
        default_factory=utcnow,
        validation_alias=AliasChoices("added_at", "addedAt"),
    )
    watched_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("watched_at", "watchedAt")
    )
    progress: int | None = Field(default=None, ge=0, le=100)
    season: int | None = Field(
        default=None, validation_alias=AliasChoices("season", "seasonNumber")
    )
    episode: int | None = Field(
        default=None, validation_alias=AliasChoices("episode", "episodeNumber")
    )
    genres: list[str] = Field(default_factory=list)

    @property
    def key(self) -> tuple[str, int]:
        """Composite identity used for uniqueness and deduplication."""

        return (self.media_type, self.media_id)

    def to_payload(self) -> dict[str, Any]:
        """Return the camelCase body expected by the user-profile store."""

        payload: dict[str, Any] = {
            "mediaId": self.media_id,
            "mediaType": self.media_type,
            "title": self.title,
        }
        if self.poster_path:
            payload["posterPath"] = self.poster_path
        if self.progress is not None:
            payload["progress"] = self.progress
        if self.season is not None:
            payload["season"] = self.season
        if self.episode is not None:
            payload["episode"] = self.episode
        if self.genres:
            payload["genres"] = list(self.genres)
        return payload


class UserSignal(BaseModel):
    """Aggregated view of the user's lists and explicit genre preferences."""

    model_config = ConfigDict(populate_by_name=True)

    favorites: list[TrackedItem] = Field(default_factory=list)
    watchlist: list[TrackedItem] = Field(default_factory=list)
    recent_watches: list[TrackedItem] = Field(
        default_factory=list,
        validation_alias=AliasChoices("recent_watches", "recentWatches"),
    )
    explicit_genres: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices(
            "explicit_genres", "explicitGenres", "favoriteGenres"
        ),
    )

    def tracked_keys(self) -> set[tuple[str, int]]:
        """Return every ``(media_type, media_id)`` present in any list."""

        return {
            item.key
            for item in (*self.favorites, *self.watchlist, *self.recent_watches)
        }

    def is_empty(self) -> bool:
        return not (
            self.favorites or self.watchlist or self.recent_watches or self.explicit_genres
        )


class RecommendationCandidate(BaseModel):
    """A scored suggestion produced by one generation strategy."""

    media_id: int
    media_type: MediaType
    title: str
    poster_path: str | None = None
    score: float
    reason: str
    genres: list[str] = Field(default_factory=list)

    @property
    def key(self) -> tuple[str, int]:
        return (self.media_type, self.media_id)


class PagedResult(BaseModel):
    """The catalog's paginated list envelope."""

    page: int = 1
    results: list[dict[str, Any]] = Field(default_factory=list)
    total_pages: int = 0
    total_results: int = 0

    @classmethod
    def empty(cls) -> "PagedResult":
        return cls(page=1, results=[], total_pages=0, total_results=0)


class ApiResponse(BaseModel, Generic[T]):
    """Response envelope returned by the user-profile store."""

    success: bool
    message: str = ""
    data: T | None = None
    code: str | None = None

    @property
    def already_present(self) -> bool:
        return self.code == "already_present"


class TrackedPage(BaseModel):
    """One page of a tracked list."""

    items: list[TrackedItem] = Field(default_factory=list)
    page: int = 1
    limit: int = 20
    total: int = 0
