"""Personalised recommendations built from the user's tracked lists."""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime
from typing import Any, Iterable, Mapping, Protocol, Sequence

from ..genres import find_genre
from ..models import MediaType, RecommendationCandidate, TrackedItem, UserSignal, ensure_utc
from .tmdb import CatalogError, TMDBClient

logger = logging.getLogger(__name__)

EXPLICIT_GENRE_WEIGHT = 3.0
FAVORITE_GENRE_WEIGHT = 2.0
WATCHLIST_GENRE_WEIGHT = 1.5
RECENT_WATCH_GENRE_WEIGHT = 1.0

TOP_GENRE_COUNT = 3
SIMILAR_SEED_COUNT = 3

GENRE_BASE_SCORE = 6.0
MAX_SCORE = 10.0
SIMILAR_SCORE = 8.5
TRENDING_BASE_SCORE = 7.0

TRENDING_REASON = "Trending now"

DEFAULT_LIMIT = 20


def build_genre_weights(signal: UserSignal) -> dict[str, float]:
    """Accumulate additive genre weights; insertion order is first-seen order."""

    weights: dict[str, float] = {}

    def _add(genres: Iterable[str], amount: float) -> None:
        for genre in genres:
            name = (genre or "").strip()
            if not name:
                continue
            weights[name] = weights.get(name, 0.0) + amount

    _add(signal.explicit_genres, EXPLICIT_GENRE_WEIGHT)
    for item in signal.favorites:
        _add(item.genres, FAVORITE_GENRE_WEIGHT)
    for item in signal.watchlist:
        _add(item.genres, WATCHLIST_GENRE_WEIGHT)
    for item in signal.recent_watches:
        _add(item.genres, RECENT_WATCH_GENRE_WEIGHT)
    return weights


def top_genres(weights: Mapping[str, float], count: int = TOP_GENRE_COUNT) -> list[tuple[str, float]]:
    # sorted() is stable, so equal weights keep first-seen order.
    ranked = sorted(weights.items(), key=lambda pair: pair[1], reverse=True)
    return ranked[:count]


def _share(limit: int, divisor: int) -> int:
    return max(1, math.ceil(limit / divisor))


def _candidate(
    payload: Mapping[str, Any],
    media_type: MediaType,
    *,
    score: float,
    reason: str,
    genres: Sequence[str] = (),
) -> RecommendationCandidate | None:
    media_id = payload.get("id")
    if not isinstance(media_id, int):
        return None
    title = payload.get("title") or payload.get("name") or ""
    return RecommendationCandidate(
        media_id=media_id,
        media_type=media_type,
        title=str(title),
        poster_path=payload.get("poster_path"),
        score=score,
        reason=reason,
        genres=list(genres),
    )


def _candidates(
    results: Iterable[Mapping[str, Any]],
    media_type: MediaType,
    limit: int,
    **fields: Any,
) -> list[RecommendationCandidate]:
    collected: list[RecommendationCandidate] = []
    for payload in results:
        if len(collected) >= limit:
            break
        candidate = _candidate(payload, media_type, **fields)
        if candidate is not None:
            collected.append(candidate)
    return collected


class CandidateStrategy(Protocol):
    """A unit producing unranked candidates for one angle of the signal."""

    name: str

    async def generate(
        self, signal: UserSignal, weights: Mapping[str, float], limit: int
    ) -> list[RecommendationCandidate]: ...


class GenreStrategy:
    """Discover titles in the user's strongest genres."""

    name = "genre"

    def __init__(self, client: TMDBClient) -> None:
        self._client = client

    async def generate(
        self, signal: UserSignal, weights: Mapping[str, float], limit: int
    ) -> list[RecommendationCandidate]:
        per_call = _share(limit, 6)
        jobs = []
        for genre, weight in top_genres(weights):
            definition = find_genre(genre)
            if definition is None:
                logger.debug("No catalog genre for %r; skipping", genre)
                continue
            score = min(GENRE_BASE_SCORE + weight * 0.5, MAX_SCORE)
            for media_type in ("movie", "tv"):
                jobs.append(
                    self._discover(definition.name, definition.genre_id(media_type), media_type, score, per_call)
                )
        batches = await asyncio.gather(*jobs)
        return [candidate for batch in batches for candidate in batch]

    async def _discover(
        self,
        genre: str,
        genre_id: int,
        media_type: MediaType,
        score: float,
        limit: int,
    ) -> list[RecommendationCandidate]:
        try:
            result = await self._client.discover_by_genre(media_type, genre_id)
        except CatalogError as exc:
            logger.warning("Genre discovery for %s (%s) failed: %s", genre, media_type, exc)
            return []
        noun = "movies" if media_type == "movie" else "shows"
        return _candidates(
            result.results,
            media_type,
            limit,
            score=score,
            reason=f"Because you like {genre} {noun}",
            genres=[genre],
        )


class SimilarStrategy:
    """Suggest titles similar to the user's latest favorites."""

    name = "similar"

    def __init__(self, client: TMDBClient) -> None:
        self._client = client

    async def generate(
        self, signal: UserSignal, weights: Mapping[str, float], limit: int
    ) -> list[RecommendationCandidate]:
        seeds = latest_favorites(signal.favorites, SIMILAR_SEED_COUNT)
        if not seeds:
            return []
        per_seed = _share(limit, 3)
        batches = await asyncio.gather(*(self._similar(seed, per_seed) for seed in seeds))
        return [candidate for batch in batches for candidate in batch]

    async def _similar(self, seed: TrackedItem, limit: int) -> list[RecommendationCandidate]:
        try:
            results = await self._client.similar(seed.media_type, seed.media_id)
        except CatalogError as exc:
            logger.warning("Similar titles for %s failed: %s", seed.key, exc)
            return []
        return _candidates(
            results,
            seed.media_type,
            limit,
            score=SIMILAR_SCORE,
            reason=f"Because you liked {seed.title}",
        )


def latest_favorites(favorites: Sequence[TrackedItem], count: int) -> list[TrackedItem]:
    def _added(item: TrackedItem) -> datetime:
        return ensure_utc(item.added_at)  # type: ignore[return-value]

    return sorted(favorites, key=_added, reverse=True)[:count]


class TrendingStrategy:
    """Weekly trending movies and shows, scored by audience rating."""

    name = "trending"

    def __init__(self, client: TMDBClient) -> None:
        self._client = client

    async def generate(
        self, signal: UserSignal, weights: Mapping[str, float], limit: int
    ) -> list[RecommendationCandidate]:
        per_type = _share(limit, 2)
        movies, shows = await asyncio.gather(
            self._trending("movie", per_type),
            self._trending("tv", per_type),
        )
        return [*movies, *shows]

    async def _trending(self, media_type: MediaType, limit: int) -> list[RecommendationCandidate]:
        try:
            result = await self._client.trending(media_type, "week")
        except CatalogError as exc:
            logger.warning("Trending %s unavailable: %s", media_type, exc)
            return []
        collected: list[RecommendationCandidate] = []
        for payload in result.results:
            if len(collected) >= limit:
                break
            candidate = _candidate(
                payload,
                media_type,
                score=trending_score(payload.get("vote_average")),
                reason=TRENDING_REASON,
            )
            if candidate is not None:
                collected.append(candidate)
        return collected


def trending_score(vote_average: Any) -> float:
    try:
        rating = float(vote_average or 0.0)
    except (TypeError, ValueError):
        rating = 0.0
    return TRENDING_BASE_SCORE + (rating / 10.0) * 2.0


def filter_and_deduplicate(
    candidates: Iterable[RecommendationCandidate], signal: UserSignal
) -> list[RecommendationCandidate]:
    """Drop already tracked titles and repeats, keeping the first occurrence."""

    seen = signal.tracked_keys()
    unique: list[RecommendationCandidate] = []
    for candidate in candidates:
        if candidate.key in seen:
            continue
        seen.add(candidate.key)
        unique.append(candidate)
    return unique


def rank(candidates: Sequence[RecommendationCandidate], limit: int) -> list[RecommendationCandidate]:
    ordered = sorted(candidates, key=lambda candidate: candidate.score, reverse=True)
    return ordered[: max(0, limit)]


class RecommendationEngine:
    """Runs every strategy concurrently and merges the results in order."""

    def __init__(
        self,
        client: TMDBClient,
        strategies: Sequence[CandidateStrategy] | None = None,
        *,
        default_limit: int = DEFAULT_LIMIT,
    ) -> None:
        self._client = client
        self._strategies: tuple[CandidateStrategy, ...] = tuple(
            strategies
            if strategies is not None
            else (GenreStrategy(client), SimilarStrategy(client), TrendingStrategy(client))
        )
        self._default_limit = default_limit

    @property
    def strategies(self) -> tuple[CandidateStrategy, ...]:
        return self._strategies

    async def recommend(
        self, signal: UserSignal, limit: int | None = None
    ) -> list[RecommendationCandidate]:
        limit = self._default_limit if limit is None else limit
        if limit <= 0:
            return []
        weights = build_genre_weights(signal)
        outcomes = await asyncio.gather(
            *(strategy.generate(signal, weights, limit) for strategy in self._strategies),
            return_exceptions=True,
        )

        combined: list[RecommendationCandidate] = []
        for strategy, outcome in zip(self._strategies, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.warning(
                    "Recommendation strategy %s failed: %s",
                    getattr(strategy, "name", strategy.__class__.__name__),
                    outcome,
                )
                continue
            combined.extend(outcome)

        ranked = rank(filter_and_deduplicate(combined, signal), limit)
        logger.debug(
            "Ranked %d of %d candidates (%d genres weighted)",
            len(ranked),
            len(combined),
            len(weights),
        )
        return ranked


async def recommend_or_fallback(
    engine: RecommendationEngine,
    client: TMDBClient,
    signal: UserSignal,
    *,
    limit: int | None = None,
    fallback_count: int = 12,
) -> tuple[list[RecommendationCandidate], list[dict[str, Any]]]:
    """Return personalised picks, or generic catalog content when there are none.

    The first element holds the ranked candidates; the second is only filled
    when that list is empty. Personalised generation is never retried.
    """

    ranked = await engine.recommend(signal, limit)
    if ranked:
        return ranked, []
    logger.info("No personalised recommendations; using fallback content")
    return [], await client.fallback_recommendations(fallback_count)
