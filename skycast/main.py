"""
FastAPI entrypoint.

This file focuses on:
- routing
- request/response handling
- mapping application errors to status codes

Collaborators (weather client, matcher, AI generator, context generator) are
built once in create_app and read from app.state by the handlers.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import crud, exporters, models
from .db import Base, engine, get_db
from .errors import (
    AIUnavailableError,
    InfrastructureError,
    NotFoundError,
    ValidationError,
)
from .logging_config import configure_logging
from .schemas import (
    PageOut,
    WeatherLookupOut,
    WeatherQueryCreate,
    WeatherQueryFilters,
    WeatherQueryUpdate,
)
from .services import Services, build_services
from .settings import Settings, settings
from .weather_clients import WeatherError

logger = logging.getLogger(__name__)

router = APIRouter()


def query_to_dict(model: models.WeatherQuery) -> dict:
    """Convert ORM model -> dict for JSON responses and exports."""
    coordinates = None
    if model.lat is not None and model.lon is not None:
        coordinates = {"lat": model.lat, "lon": model.lon}
    return {
        "id": model.id,
        "location": model.location,
        "location_normalized": model.location_normalized,
        "coordinates": coordinates,
        "date_range": {"start_date": model.start_date, "end_date": model.end_date},
        "weather_data": model.weather_data,
        "forecast_data": model.forecast_data,
        "user_notes": model.user_notes,
        "tags": model.tags,
        "created_at": model.created_at,
        "updated_at": model.updated_at,
    }


def insight_to_dict(model: Optional[models.AIInsight]) -> Optional[dict]:
    if model is None:
        return None
    return {
        "id": model.id,
        "query_id": model.query_id,
        "location": model.location,
        "insight": model.insight,
        "recommendations": model.recommendations or [],
        "weather_summary": model.weather_summary,
        "travel_advice": model.travel_advice,
        "clothing_recommendations": model.clothing_recommendations,
        "activity_suggestions": model.activity_suggestions,
        "generated_at": model.generated_at,
        "model": model.model,
    }


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def query_filters(
    location: Optional[str] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    tags: Optional[List[str]] = Query(None),
    has_ai_insight: Optional[bool] = None,
) -> WeatherQueryFilters:
    """Shared by the list and export endpoints."""
    return WeatherQueryFilters(
        location=location,
        date_from=date_from,
        date_to=date_to,
        tags=tags,
        has_ai_insight=has_ai_insight,
    )


def _detail(record: models.WeatherQuery, insight: Optional[models.AIInsight], services: Services) -> dict:
    current, forecast = crud.snapshots(record)
    context = services.context.get_context(record.location, current, forecast)
    return {
        "query": query_to_dict(record),
        "ai_insight": insight_to_dict(insight),
        "location_context": context.as_dict(),
    }


async def _try_generate_insight(db: Session, record: models.WeatherQuery,
                                services: Services) -> Optional[models.AIInsight]:
    """Best effort: a missing or failing AI gateway never fails create/update."""
    if not services.ai.is_available():
        logger.info("ai_insight_skipped query_id=%s reason=unavailable", record.id)
        return None
    try:
        return await crud.generate_insight(db, record.id, services.ai)
    except AIUnavailableError as e:
        logger.warning("ai_insight_failed query_id=%s error=%s", record.id, e)
        return None


# -------------------------
# Lookup
# -------------------------

@router.get("/api/weather", response_model=WeatherLookupOut)
async def api_weather(q: str = Query(..., min_length=1, max_length=255),
                      services: Services = Depends(get_services)):
    """
    Location-based weather without saving anything:
    - current weather
    - 5-day forecast (null if the forecast call failed)
    - location context
    """
    try:
        current, forecast = await services.weather.fetch_all(q)
    except WeatherError as e:
        if e.is_bad_location:
            raise ValidationError(str(e)) from e
        raise InfrastructureError(f"Weather provider unavailable: {e}") from e

    context = services.context.get_context(q, current, forecast)
    return WeatherLookupOut(current=current, forecast=forecast, location_context=context.as_dict())


# -------------------------
# Weather query CRUD
# -------------------------

@router.get("/api/weather-queries", response_model=PageOut)
def api_list_queries(
    filters: WeatherQueryFilters = Depends(query_filters),
    page: int = 1,
    limit: int = 10,
    db: Session = Depends(get_db),
    cfg: Settings = Depends(get_settings),
):
    """Filtered, paginated list (newest first)."""
    result = crud.list_queries(db, filters, page=page, limit=limit, max_limit=cfg.list_max_limit)
    return PageOut(
        data=[query_to_dict(r) for r in result.items],
        total_count=result.total_count,
        page=result.page,
        limit=result.limit,
        total_pages=result.total_pages,
    )


@router.post("/api/weather-queries", status_code=201)
async def api_create_query(payload: WeatherQueryCreate, db: Session = Depends(get_db),
                           services: Services = Depends(get_services)):
    """Create a stored query; an AI insight is attached when the gateway is available."""
    record = await crud.create_query(db, payload, services.weather, services.matcher)
    insight = await _try_generate_insight(db, record, services)
    return _detail(record, insight, services)


@router.get("/api/weather-queries/{query_id}")
def api_get_query(query_id: str, db: Session = Depends(get_db), services: Services = Depends(get_services)):
    record = crud.get_query(db, query_id)
    if record is None:
        raise NotFoundError("Weather query not found")
    return _detail(record, crud.get_insight(db, query_id), services)


@router.put("/api/weather-queries/{query_id}")
async def api_update_query(query_id: str, payload: WeatherQueryUpdate, db: Session = Depends(get_db),
                           services: Services = Depends(get_services)):
    """
    Partial update. A new location refreshes the weather snapshots and, if the
    query already had an insight, regenerates it for the new conditions.
    """
    if not payload.model_fields_set:
        raise ValidationError("No fields to update")

    had_insight = crud.get_insight(db, query_id) is not None
    record = await crud.update_query(db, query_id, payload, services.weather, services.matcher)

    if not payload.location:
        insight = crud.get_insight(db, query_id)
    elif had_insight:
        insight = await _try_generate_insight(db, record, services)
    else:
        insight = None
    return _detail(record, insight, services)


@router.delete("/api/weather-queries/{query_id}", status_code=204)
def api_delete_query(query_id: str, db: Session = Depends(get_db)):
    if not crud.delete_query(db, query_id):
        raise NotFoundError("Weather query not found")
    return Response(status_code=204)


@router.post("/api/weather-queries/{query_id}/insight", status_code=201)
async def api_generate_insight(query_id: str, db: Session = Depends(get_db),
                               services: Services = Depends(get_services)):
    """Explicit (re)generation; 503 when the AI gateway can't be used."""
    insight = await crud.generate_insight(db, query_id, services.ai)
    return insight_to_dict(insight)


# -------------------------
# Export endpoint
# -------------------------

@router.get("/api/export/{fmt}")
def api_export(
    fmt: str,
    filters: WeatherQueryFilters = Depends(query_filters),
    limit: int = 100,
    db: Session = Depends(get_db),
    cfg: Settings = Depends(get_settings),
):
    """Export saved queries and their insights as json/csv/xml/pdf/markdown."""
    if fmt.lower() not in exporters.FORMATS:
        raise ValidationError(
            f"Unsupported export format: {fmt!r}. Supported formats: {', '.join(exporters.FORMATS)}"
        )

    result = crud.list_queries(db, filters, page=1, limit=limit, max_limit=cfg.export_max_limit)
    queries = [query_to_dict(r) for r in result.items]
    insights = [insight_to_dict(i) for i in crud.insights_for(db, [r.id for r in result.items])]

    out = exporters.export(
        jsonable_encoder(queries),
        jsonable_encoder(insights),
        fmt,
        max_pdf_queries=cfg.pdf_max_queries,
        max_pdf_insights=cfg.pdf_max_insights,
    )
    return Response(
        content=out.payload,
        media_type=out.content_type,
        headers={"Content-Disposition": f'attachment; filename="{out.filename}"'},
    )


@router.get("/health")
def health(db: Session = Depends(get_db)):
    """Liveness plus a trivial database round trip."""
    db.execute(text("SELECT 1"))
    return {"status": "ok"}


# -------------------------
# Error mapping
# -------------------------

async def _validation_error(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


async def _not_found(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def _ai_unavailable(request: Request, exc: AIUnavailableError):
    return JSONResponse(status_code=503, content={"detail": str(exc)})


async def _infrastructure_error(request: Request, exc: InfrastructureError):
    logger.error("infrastructure_error path=%s error=%s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


async def _database_error(request: Request, exc: SQLAlchemyError):
    logger.exception("database_error path=%s", request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


async def _request_validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


def create_app(app_settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """
    Build the application.

    Tests pass their own Services (fake weather client / AI gateway); the
    database comes from db.engine, configured by DATABASE_URL.
    """
    cfg = app_settings or settings
    configure_logging(cfg)

    # Create tables automatically (no migrations for a two-table store).
    Base.metadata.create_all(bind=engine)

    app = FastAPI(title=cfg.app_name)
    app.state.settings = cfg
    app.state.services = services or build_services(cfg)

    app.add_exception_handler(ValidationError, _validation_error)
    app.add_exception_handler(NotFoundError, _not_found)
    app.add_exception_handler(AIUnavailableError, _ai_unavailable)
    app.add_exception_handler(InfrastructureError, _infrastructure_error)
    app.add_exception_handler(SQLAlchemyError, _database_error)
    app.add_exception_handler(RequestValidationError, _request_validation_error)

    app.include_router(router)
    logger.info("app_started name=%s ai_available=%s", cfg.app_name, app.state.services.ai.is_available())
    return app


app = create_app()
