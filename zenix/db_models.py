"""SQLAlchemy ORM models backing the local tracked-list store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, JSON, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base
from .models import TrackedItem, ensure_utc, utcnow


class TrackedItemRecord(Base):
    """One entry of a user's favorites, watchlist or recent watches."""

    __tablename__ = "tracked_items"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "list_kind",
            "media_id",
            "media_type",
            name="uq_tracked_item_key",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    list_kind: Mapped[str] = mapped_column(String(32))
    media_id: Mapped[int] = mapped_column(Integer)
    media_type: Mapped[str] = mapped_column(String(8))
    title: Mapped[str] = mapped_column(String(255), default="")
    poster_path: Mapped[str | None] = mapped_column(String(255), nullable=True)
    progress: Mapped[int | None] = mapped_column(Integer, nullable=True)
    season: Mapped[int | None] = mapped_column(Integer, nullable=True)
    episode: Mapped[int | None] = mapped_column(Integer, nullable=True)
    genres: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    watched_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def to_item(self) -> TrackedItem:
        return TrackedItem(
            media_id=self.media_id,
            media_type=self.media_type,  # type: ignore[arg-type]
            title=self.title or "",
            poster_path=self.poster_path,
            added_at=ensure_utc(self.added_at),
            watched_at=ensure_utc(self.watched_at),
            progress=self.progress,
            season=self.season,
            episode=self.episode,
            genres=list(self.genres or []),
        )
