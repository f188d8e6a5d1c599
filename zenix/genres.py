"""Genre definitions mapping display names to catalog genre identifiers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from .utils import slugify


MediaType = Literal["movie", "tv"]


@dataclass(frozen=True)
class GenreDefinition:
    """Describes a browseable genre and its catalog ids per media type."""

    key: str
    name: str
    movie_genre_id: int
    tv_genre_id: int

    def genre_id(self, media_type: MediaType) -> int:
        return self.movie_genre_id if media_type == "movie" else self.tv_genre_id


# TV has no dedicated horror, thriller, history or sci-fi genres; those map
# onto the nearest TV genre the catalog exposes.
GENRES: tuple[GenreDefinition, ...] = (
    GenreDefinition(key="action", name="Action", movie_genre_id=28, tv_genre_id=10759),
    GenreDefinition(key="adventure", name="Adventure", movie_genre_id=12, tv_genre_id=10759),
    GenreDefinition(key="animation", name="Animation", movie_genre_id=16, tv_genre_id=16),
    GenreDefinition(key="comedy", name="Comedy", movie_genre_id=35, tv_genre_id=35),
    GenreDefinition(key="crime", name="Crime", movie_genre_id=80, tv_genre_id=80),
    GenreDefinition(key="documentary", name="Documentary", movie_genre_id=99, tv_genre_id=99),
    GenreDefinition(key="drama", name="Drama", movie_genre_id=18, tv_genre_id=18),
    GenreDefinition(key="family", name="Family", movie_genre_id=10751, tv_genre_id=10751),
    GenreDefinition(key="fantasy", name="Fantasy", movie_genre_id=14, tv_genre_id=10765),
    GenreDefinition(key="history", name="History", movie_genre_id=36, tv_genre_id=99),
    GenreDefinition(key="horror", name="Horror", movie_genre_id=27, tv_genre_id=9648),
    GenreDefinition(key="music", name="Music", movie_genre_id=10402, tv_genre_id=10402),
    GenreDefinition(key="mystery", name="Mystery", movie_genre_id=9648, tv_genre_id=9648),
    GenreDefinition(key="sci-fi", name="Science Fiction", movie_genre_id=878, tv_genre_id=10765),
    GenreDefinition(key="thriller", name="Thriller", movie_genre_id=53, tv_genre_id=9648),
    GenreDefinition(key="war", name="War", movie_genre_id=10752, tv_genre_id=10768),
    GenreDefinition(key="western", name="Western", movie_genre_id=37, tv_genre_id=37),
)

_BY_KEY: dict[str, GenreDefinition] = {definition.key: definition for definition in GENRES}
_BY_NAME: dict[str, GenreDefinition] = {
    definition.name.casefold(): definition for definition in GENRES
}


def find_genre(value: str | None) -> GenreDefinition | None:
    """Resolve a genre by display name or slug, case-insensitively."""

    if not value:
        return None
    cleaned = value.strip()
    if not cleaned:
        return None
    match = _BY_NAME.get(cleaned.casefold())
    if match is not None:
        return match
    return _BY_KEY.get(slugify(cleaned))
