"""
ORM models.

Two independent "collections":
- weather_queries: what the user asked for plus the weather snapshot taken at
  creation/update time (stored as JSON, embedded by value)
- ai_insights: derived records pointing back at a query by id only, so they
  can be regenerated or deleted without touching the query row

Tags live in their own small table so "match any tag" stays a plain SQL filter.
"""

import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Date, DateTime, Float, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class WeatherQuery(Base):
    __tablename__ = "weather_queries"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)

    # What the user typed (kept verbatim)
    location: Mapped[str] = mapped_column(String(255))

    # Lowercased resolved name, used for search
    location_normalized: Mapped[str] = mapped_column(String(255), index=True)
    lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    lon: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    start_date: Mapped[date] = mapped_column(Date, index=True)
    end_date: Mapped[date] = mapped_column(Date)

    # Snapshots as returned by the weather adapter (WeatherSnapshot / ForecastSnapshot dumps)
    weather_data: Mapped[Dict[str, Any]] = mapped_column(JSON)
    forecast_data: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    user_notes: Mapped[str] = mapped_column(Text, default="")

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    tag_rows: Mapped[List["QueryTag"]] = relationship(
        back_populates="query",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def tags(self) -> List[str]:
        return [t.tag for t in self.tag_rows]

    def set_tags(self, tags: List[str]) -> None:
        """Replace the tag set; duplicates and blanks are dropped, order of first appearance kept."""
        seen: List[str] = []
        for tag in tags:
            tag = tag.strip()
            if tag and tag not in seen:
                seen.append(tag)
        # Surviving tags keep their row; (query_id, tag) is unique
        existing = {row.tag: row for row in self.tag_rows}
        self.tag_rows = [existing.get(t) or QueryTag(tag=t) for t in seen]


class QueryTag(Base):
    __tablename__ = "query_tags"
    __table_args__ = (UniqueConstraint("query_id", "tag"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    query_id: Mapped[str] = mapped_column(ForeignKey("weather_queries.id", ondelete="CASCADE"), index=True)
    tag: Mapped[str] = mapped_column(String(64), index=True)

    query: Mapped[WeatherQuery] = relationship(back_populates="tag_rows")


class AIInsight(Base):
    __tablename__ = "ai_insights"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)

    # Reference by value; no FK so deleting either side never blocks on the other
    query_id: Mapped[str] = mapped_column(String(32), index=True)

    location: Mapped[str] = mapped_column(String(255))
    insight: Mapped[str] = mapped_column(Text, default="")
    recommendations: Mapped[List[str]] = mapped_column(JSON, default=list)
    weather_summary: Mapped[str] = mapped_column(Text, default="")
    travel_advice: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    clothing_recommendations: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)
    activity_suggestions: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)

    generated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    model: Mapped[str] = mapped_column(String(128), default="unknown")
