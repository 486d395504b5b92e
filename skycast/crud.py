"""
CRUD functions for weather queries and their AI insights.

Kept separate from main.py so that:
- main.py stays readable (routing + request/response)
- validation (date range rules, location resolution) lives in one place
- the functions are easy to exercise with a real session and fake clients

Every function performs single-row writes only; there are no transactions
spanning a query and its insight.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

from sqlalchemy import delete, exists, func, select
from sqlalchemy.orm import Session

from . import models
from .ai_insights import AIInsightGenerator, InsightFields
from .date_ranges import DateRange, parse_date, validate_date_range
from .errors import AIUnavailableError, InfrastructureError, NotFoundError, ValidationError
from .location_matcher import LocationMatch, LocationMatcher, lookup_string, normalize_location
from .schemas import (
    DateRangeIn,
    ForecastSnapshot,
    WeatherQueryCreate,
    WeatherQueryFilters,
    WeatherQueryUpdate,
    WeatherSnapshot,
)
from .weather_clients import OpenWeatherClient, WeatherError

logger = logging.getLogger(__name__)

# Interactive listing never returns more than this many rows per page
MAX_PAGE_SIZE = 50


@dataclass
class Page:
    items: List[models.WeatherQuery]
    total_count: int
    page: int
    limit: int
    total_pages: int


def _validated_range(date_range: DateRangeIn) -> DateRange:
    result = validate_date_range(date_range.start_date, date_range.end_date)
    if not result.is_valid:
        raise ValidationError(f"Invalid date range: {', '.join(result.errors)}")
    return result.adjusted_range


async def _resolve_and_fetch(
    location: str,
    weather: OpenWeatherClient,
    matcher: LocationMatcher,
) -> Tuple[LocationMatch, WeatherSnapshot, Optional[ForecastSnapshot]]:
    """
    Resolve the location, then take a fresh current + forecast snapshot.

    The current snapshot is required; the forecast may come back as None.
    """
    matches = await matcher.match(location)
    if not matches:
        raise ValidationError(f'Location "{location}" not found. Please check the spelling and try again.')

    try:
        current, forecast = await weather.fetch_all(lookup_string(matches, location))
    except WeatherError as e:
        if e.is_bad_location:
            raise ValidationError(
                f'Location "{location}" not found. Please check the spelling and try again.'
            ) from e
        raise InfrastructureError(f"Weather provider unavailable: {e}") from e

    return matches[0], current, forecast


def _apply_location(record: models.WeatherQuery, location: str, best: LocationMatch,
                    current: WeatherSnapshot, forecast: Optional[ForecastSnapshot]) -> None:
    coords = current.coordinates
    if coords is None and best.coordinates.lat != 0.0 and best.coordinates.lon != 0.0:
        coords = best.coordinates

    record.location = location.strip()
    record.location_normalized = normalize_location(current.name or best.name or location)
    record.lat = coords.lat if coords else None
    record.lon = coords.lon if coords else None
    record.weather_data = current.model_dump(mode="json")
    record.forecast_data = forecast.model_dump(mode="json") if forecast else None


def snapshots(record: models.WeatherQuery) -> Tuple[WeatherSnapshot, Optional[ForecastSnapshot]]:
    """Stored JSON -> snapshot models."""
    current = WeatherSnapshot.model_validate(record.weather_data)
    forecast = ForecastSnapshot.model_validate(record.forecast_data) if record.forecast_data else None
    return current, forecast


async def create_query(db: Session, payload: WeatherQueryCreate,
                       weather: OpenWeatherClient, matcher: LocationMatcher) -> models.WeatherQuery:
    """
    CREATE:
    - validate date range
    - resolve location (provider first, gazetteer fallback)
    - fetch current weather (required) + forecast (optional) concurrently
    - store
    """
    date_range = _validated_range(payload.date_range)
    best, current, forecast = await _resolve_and_fetch(payload.location, weather, matcher)

    now = models.utcnow()
    record = models.WeatherQuery(
        start_date=date_range.start_date,
        end_date=date_range.end_date,
        user_notes=payload.user_notes or "",
        created_at=now,
        updated_at=now,
    )
    _apply_location(record, payload.location, best, current, forecast)
    record.set_tags(payload.tags or [])

    db.add(record)
    db.commit()
    db.refresh(record)
    logger.info("weather_query_created id=%s location=%s forecast=%s",
                record.id, record.location_normalized, forecast is not None)
    return record


def get_query(db: Session, query_id: str) -> Optional[models.WeatherQuery]:
    """Fetch one record; unknown or malformed ids just return None."""
    if not query_id or not isinstance(query_id, str):
        return None
    return db.get(models.WeatherQuery, query_id)


async def update_query(db: Session, query_id: str, payload: WeatherQueryUpdate,
                       weather: OpenWeatherClient, matcher: LocationMatcher) -> models.WeatherQuery:
    """
    UPDATE (partial):
    - date_range: re-validated
    - location: re-resolved, both snapshots replaced wholesale
    - user_notes / tags: replaced
    - updated_at: always refreshed
    """
    record = get_query(db, query_id)
    if record is None:
        raise NotFoundError("Weather query not found")

    supplied = payload.model_fields_set

    # Validate before any network call
    date_range = None
    if "date_range" in supplied and payload.date_range is not None:
        date_range = _validated_range(payload.date_range)

    if "location" in supplied and payload.location:
        best, current, forecast = await _resolve_and_fetch(payload.location, weather, matcher)
        _apply_location(record, payload.location, best, current, forecast)
        # A stored insight describes the old place
        db.execute(delete(models.AIInsight).where(models.AIInsight.query_id == record.id))

    if date_range is not None:
        record.start_date = date_range.start_date
        record.end_date = date_range.end_date

    if "user_notes" in supplied:
        record.user_notes = payload.user_notes or ""

    if "tags" in supplied:
        record.set_tags(payload.tags or [])

    record.updated_at = models.utcnow()

    db.add(record)
    db.commit()
    db.refresh(record)
    logger.info("weather_query_updated id=%s fields=%s", record.id, ",".join(sorted(supplied)))
    return record


def delete_query(db: Session, query_id: str) -> bool:
    """
    DELETE with best-effort cascade.

    Insights go first: if the second step fails we are left with a query
    that has no insight, never an insight pointing at a deleted query.
    """
    if not query_id or not isinstance(query_id, str):
        return False

    db.execute(delete(models.AIInsight).where(models.AIInsight.query_id == query_id))
    db.commit()

    record = get_query(db, query_id)
    if record is None:
        return False

    db.delete(record)
    db.commit()
    logger.info("weather_query_deleted id=%s", query_id)
    return True


def _filter_date(raw: Optional[str], name: str):
    if not raw:
        return None
    bound = parse_date(raw)
    if bound is None:
        raise ValidationError(f"Invalid {name}: expected YYYY-MM-DD")
    return bound


def list_queries(db: Session, filters: Optional[WeatherQueryFilters] = None,
                 page: int = 1, limit: int = 10, max_limit: int = MAX_PAGE_SIZE) -> Page:
    """Filtered, newest-first, 1-indexed pagination."""
    filters = filters or WeatherQueryFilters()
    page = max(1, page)
    limit = max(1, min(limit, max_limit))

    conditions = []

    if filters.location:
        needle = normalize_location(filters.location)
        conditions.append(models.WeatherQuery.location_normalized.contains(needle, autoescape=True))

    # Inclusive bounds on the range's start date
    date_from = _filter_date(filters.date_from, "date_from")
    if date_from:
        conditions.append(models.WeatherQuery.start_date >= date_from)
    date_to = _filter_date(filters.date_to, "date_to")
    if date_to:
        conditions.append(models.WeatherQuery.start_date <= date_to)

    tags = [t for t in (filters.tags or []) if t]
    if tags:
        conditions.append(models.WeatherQuery.tag_rows.any(models.QueryTag.tag.in_(tags)))

    if filters.has_ai_insight is not None:
        has_insight = exists().where(models.AIInsight.query_id == models.WeatherQuery.id)
        conditions.append(has_insight if filters.has_ai_insight else ~has_insight)

    total = db.scalar(select(func.count()).select_from(models.WeatherQuery).where(*conditions)) or 0
    items = db.scalars(
        select(models.WeatherQuery)
        .where(*conditions)
        .order_by(models.WeatherQuery.created_at.desc(), models.WeatherQuery.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()

    return Page(
        items=list(items),
        total_count=total,
        page=page,
        limit=limit,
        total_pages=math.ceil(total / limit),
    )


# -------------------------
# AI insights
# -------------------------

def get_insight(db: Session, query_id: str) -> Optional[models.AIInsight]:
    return db.scalars(
        select(models.AIInsight)
        .where(models.AIInsight.query_id == query_id)
        .order_by(models.AIInsight.generated_at.desc())
        .limit(1)
    ).first()


def insights_for(db: Session, query_ids: List[str]) -> List[models.AIInsight]:
    """Insights for a set of queries, in the same order as the ids."""
    if not query_ids:
        return []
    rows = db.scalars(select(models.AIInsight).where(models.AIInsight.query_id.in_(query_ids))).all()
    by_query = {}
    for row in rows:
        current = by_query.get(row.query_id)
        if current is None or row.generated_at > current.generated_at:
            by_query[row.query_id] = row
    return [by_query[qid] for qid in query_ids if qid in by_query]


def save_insight(db: Session, record: models.WeatherQuery, fields: InsightFields,
                 activities: Optional[List[str]] = None) -> models.AIInsight:
    """Replace (never merge) the insight for a query."""
    db.execute(delete(models.AIInsight).where(models.AIInsight.query_id == record.id))

    insight = models.AIInsight(
        query_id=record.id,
        location=record.location,
        insight=fields.insight,
        recommendations=fields.recommendations,
        weather_summary=fields.weather_summary,
        travel_advice=fields.travel_advice,
        clothing_recommendations=fields.clothing_recommendations,
        activity_suggestions=activities,
        generated_at=models.utcnow(),
        model=fields.model or "unknown",
    )
    db.add(insight)
    db.commit()
    db.refresh(insight)
    return insight


async def generate_insight(db: Session, query_id: str, ai: AIInsightGenerator) -> models.AIInsight:
    """
    Generate and store a fresh insight for an existing query.

    Raises NotFoundError for unknown ids and AIUnavailableError when the
    gateway is not configured or fails.
    """
    record = get_query(db, query_id)
    if record is None:
        raise NotFoundError("Weather query not found")
    if not ai.is_available():
        raise AIUnavailableError("AI service is not available")

    current, forecast = snapshots(record)
    activities_task = asyncio.ensure_future(
        ai.activity_suggestions(record.location, current, record.start_date, record.end_date)
    )
    try:
        fields = await ai.generate(record.location, current, forecast)
    except BaseException:
        activities_task.cancel()
        raise
    activities = await activities_task

    insight = save_insight(db, record, fields, activities)
    logger.info("ai_insight_saved query_id=%s model=%s", record.id, insight.model)
    return insight
