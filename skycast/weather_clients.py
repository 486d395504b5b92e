"""
Weather client.

API logic stays separate from FastAPI endpoints:
- easier to test in isolation (inject an httpx transport)
- the store, the location matcher and the lookup endpoint share one request path
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, date, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .schemas import Coordinates, ForecastCity, ForecastDay, ForecastSnapshot, WeatherSnapshot

logger = logging.getLogger(__name__)

# "40.7128,-74.0060" (whitespace ignored)
COORDINATES_RE = re.compile(r"^[-+]?\d+\.?\d*,[-+]?\d+\.?\d*$")

# "10001", "10001-1234", "10001,US"
ZIP_RE = re.compile(r"(?i)\s*(\d{5})(?:-\d{4})?\s*(?:,\s*([a-z]{2}))?\s*")

FORECAST_DAYS = 5


class WeatherError(RuntimeError):
    """Raised for weather lookup failures (bad location, HTTP error, malformed payload)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_bad_location(self) -> bool:
        """True when the provider rejected the location itself rather than failing."""
        return self.status_code in (400, 404)


def is_coordinates(location: str) -> bool:
    return bool(COORDINATES_RE.match(re.sub(r"\s", "", location)))


def location_params(location: str) -> Dict[str, Any]:
    """
    Translate a free-form location into provider query params.

    Checked in this order:
    1) Coordinates: "40.7128,-74.0060" -> lat/lon (bounds validated)
    2) ZIP code: "10001", "10001-1234" or "10001,GB" -> zip (defaults to US)
    3) Anything else is a place name -> q
    """
    raw = location.strip().strip("'\"")

    if is_coordinates(raw):
        lat_s, lon_s = re.sub(r"\s", "", raw).split(",")
        lat, lon = float(lat_s), float(lon_s)
        if not (-90.0 <= lat <= 90.0):
            raise WeatherError("Invalid latitude. Must be between -90 and 90.", status_code=400)
        if not (-180.0 <= lon <= 180.0):
            raise WeatherError("Invalid longitude. Must be between -180 and 180.", status_code=400)
        return {"lat": lat, "lon": lon}

    zip_match = ZIP_RE.fullmatch(raw)
    if zip_match:
        country = (zip_match.group(2) or "US").upper()
        return {"zip": f"{zip_match.group(1)},{country}"}

    return {"q": raw}


def _num(mapping: Dict[str, Any], key: str, default: Any = 0) -> Any:
    """Optional numeric field; missing and explicit null both give the default."""
    value = mapping.get(key)
    return default if value is None else value


class OpenWeatherClient:
    """
    OpenWeatherMap wrapper.

    Endpoints used:
    - Current weather:
        /data/2.5/weather?q=...|lat=..&lon=..|zip=...&units=metric&appid=KEY
    - 5-day forecast (3-hour increments):
        /data/2.5/forecast?...same params...

    Responses are normalized into WeatherSnapshot / ForecastSnapshot; anything
    unexpected surfaces as WeatherError.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openweathermap.org",
        timeout_s: float = 10.0,
        units: str = "metric",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.units = units
        self._transport = transport

    async def _get(self, path: str, location: str, what: str) -> Dict[str, Any]:
        params = {**location_params(location), "units": self.units, "appid": self.api_key}
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
                r = await client.get(f"{self.base}{path}", params=params)
        except httpx.HTTPError as e:
            raise WeatherError(f"{what} request failed: {e}") from e

        if r.status_code == 404:
            raise WeatherError(f'Location "{location}" not found.', status_code=404)
        if r.status_code != 200:
            raise WeatherError(f"{what} failed ({r.status_code}): {r.text}", status_code=r.status_code)

        try:
            return r.json()
        except ValueError as e:
            raise WeatherError(f"{what} returned invalid JSON.") from e

    async def current_weather(self, location: str) -> WeatherSnapshot:
        """Current conditions for a place name, ZIP or "lat,lon" pair."""
        data = await self._get("/data/2.5/weather", location, "Current weather")
        try:
            return self.normalize_current(data)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise WeatherError(f"Current weather response was malformed: {e}") from e

    async def forecast(self, location: str) -> ForecastSnapshot:
        """5-day forecast summarized to one entry per day."""
        data = await self._get("/data/2.5/forecast", location, "Forecast")
        try:
            return self.summarize_to_5_days(data)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise WeatherError(f"Forecast response was malformed: {e}") from e

    async def fetch_all(self, location: str) -> Tuple[WeatherSnapshot, Optional[ForecastSnapshot]]:
        """
        Current + forecast, requested concurrently.

        Current weather is required and its failure propagates; the forecast is
        optional and a failure only costs us that part of the result.
        """
        current, forecast = await asyncio.gather(
            self.current_weather(location),
            self.forecast(location),
            return_exceptions=True,
        )
        if isinstance(current, BaseException):
            raise current
        if isinstance(forecast, Exception):
            logger.warning("forecast_fetch_failed location=%s error=%s", location, forecast)
            forecast = None
        elif isinstance(forecast, BaseException):
            raise forecast
        return current, forecast

    @staticmethod
    def normalize_current(data: Dict[str, Any]) -> WeatherSnapshot:
        main = data["main"]
        sys = data.get("sys") or {}
        wind = data.get("wind") or {}
        w = (data.get("weather") or [{}])[0]
        coord = data.get("coord")

        return WeatherSnapshot(
            name=data.get("name") or "",
            country=sys.get("country") or "",
            temperature=round(float(main["temp"])),
            feels_like=round(float(_num(main, "feels_like", main["temp"]))),
            description=w.get("description") or "",
            icon=w.get("icon") or "",
            humidity=_num(main, "humidity"),
            pressure=_num(main, "pressure"),
            # m/s -> km/h
            wind_speed=round(float(_num(wind, "speed")) * 3.6),
            wind_direction=_num(wind, "deg"),
            # metres -> km
            visibility=round(float(_num(data, "visibility")) / 1000),
            clouds=_num(data.get("clouds") or {}, "all"),
            sunrise=int(_num(sys, "sunrise")),
            sunset=int(_num(sys, "sunset")),
            coordinates=Coordinates(lat=coord["lat"], lon=coord["lon"]) if coord else None,
        )

    @staticmethod
    def summarize_to_5_days(forecast_3h: Dict[str, Any]) -> ForecastSnapshot:
        """
        OpenWeather forecast returns ~40 data points (3-hour steps).

        Strategy:
        - Group items by local date (using city timezone offset)
        - For each day:
          - min over temp_min, max over temp_max
          - description/icon/humidity/wind/pop from the first step of the day
        - Keep the first 5 days
        """
        city = forecast_3h.get("city") or {}
        tz_offset = int(_num(city, "timezone"))  # seconds offset from UTC
        items = forecast_3h["list"]

        def local_day(dt_utc: int) -> date:
            return datetime.fromtimestamp(dt_utc + tz_offset, tz=timezone.utc).date()

        grouped: Dict[date, List[Dict[str, Any]]] = {}
        for item in items:
            grouped.setdefault(local_day(int(item["dt"])), []).append(item)

        days: List[ForecastDay] = []
        for d in sorted(grouped.keys())[:FORECAST_DAYS]:
            steps = grouped[d]
            first = steps[0]
            mins = [float(_num(x["main"], "temp_min", x["main"].get("temp"))) for x in steps]
            maxs = [float(_num(x["main"], "temp_max", x["main"].get("temp"))) for x in steps]
            w = (first.get("weather") or [{}])[0]

            days.append(ForecastDay(
                date=d.isoformat(),
                label=d.strftime("%a, %b %d"),  # e.g. "Mon, Oct 19"
                temp_min=round(min(mins)),
                temp_max=round(max(maxs)),
                description=w.get("description") or "",
                icon=w.get("icon") or "",
                humidity=_num(first["main"], "humidity"),
                wind_speed=round(float(_num(first.get("wind") or {}, "speed")) * 3.6),
                # pop is 0..1 and may be missing
                pop=round(float(first.get("pop") or 0) * 100),
            ))

        return ForecastSnapshot(
            city=ForecastCity(name=city.get("name") or "", country=city.get("country") or ""),
            days=days,
        )
