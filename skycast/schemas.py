"""
Pydantic schemas.

- WeatherSnapshot / ForecastSnapshot: normalized provider data, frozen, stored
  by value inside a weather query
- Request payloads for create/update (accept snake_case or camelCase keys)
- Small response envelopes for the REST endpoints
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Coordinates(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float
    lon: float


class WeatherSnapshot(BaseModel):
    """Current conditions at one instant (metric units, wind in km/h, visibility in km)."""
    model_config = ConfigDict(frozen=True)

    name: str
    country: str = ""
    temperature: float
    feels_like: float
    description: str = ""
    icon: str = ""
    humidity: float = 0
    pressure: float = 0
    wind_speed: float = 0
    wind_direction: float = 0
    visibility: float = 0
    clouds: float = 0
    sunrise: int = 0
    sunset: int = 0
    coordinates: Optional[Coordinates] = None


class ForecastCity(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = ""
    country: str = ""


class ForecastDay(BaseModel):
    """One calendar day aggregated from 3-hour provider steps."""
    model_config = ConfigDict(frozen=True)

    date: str
    label: str
    temp_min: float
    temp_max: float
    description: str = ""
    icon: str = ""
    humidity: float = 0
    wind_speed: float = 0
    pop: int = 0


class ForecastSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    city: ForecastCity
    days: List[ForecastDay] = Field(default_factory=list, max_length=5)


class _Payload(BaseModel):
    """Request bodies accept both `date_range` and `dateRange` style keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DateRangeIn(_Payload):
    """
    Raw date range as sent by the client.

    Kept as strings on purpose: parsing and policy checks happen in the
    date range validator so malformed dates get a readable message.
    """
    start_date: str = Field(..., min_length=1)
    end_date: str = Field(..., min_length=1)


class WeatherQueryCreate(_Payload):
    location: str = Field(..., min_length=1, max_length=255)
    date_range: DateRangeIn
    user_notes: Optional[str] = None
    tags: Optional[List[str]] = None


class WeatherQueryUpdate(_Payload):
    """Any subset of fields; omitted fields stay untouched."""
    location: Optional[str] = Field(None, min_length=1, max_length=255)
    date_range: Optional[DateRangeIn] = None
    user_notes: Optional[str] = None
    tags: Optional[List[str]] = None


class WeatherQueryFilters(BaseModel):
    location: Optional[str] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    tags: Optional[List[str]] = None
    has_ai_insight: Optional[bool] = None


class PageOut(BaseModel):
    data: List[Dict[str, Any]]
    total_count: int
    page: int
    limit: int
    total_pages: int


class WeatherLookupOut(BaseModel):
    """Output of the save-less lookup endpoint."""
    current: WeatherSnapshot
    forecast: Optional[ForecastSnapshot] = None
    location_context: Dict[str, Any]
