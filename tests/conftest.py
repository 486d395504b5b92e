import os

# Must be set before skycast.settings is imported anywhere
os.environ.setdefault("OPENWEATHER_API_KEY", "test-key")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["OPENROUTER_API_KEY"] = ""

from datetime import date, timedelta  # noqa: E402
from types import SimpleNamespace  # noqa: E402
from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from skycast.ai_insights import AIInsightGenerator  # noqa: E402
from skycast.db import Base, SessionLocal, engine  # noqa: E402
from skycast.location_context import LocationContextGenerator  # noqa: E402
from skycast.location_matcher import LocationMatcher  # noqa: E402
from skycast.schemas import (  # noqa: E402
    Coordinates,
    ForecastCity,
    ForecastDay,
    ForecastSnapshot,
    WeatherSnapshot,
)
from skycast.services import Services  # noqa: E402
from skycast.weather_clients import OpenWeatherClient, WeatherError  # noqa: E402


INSIGHT_REPLY = """Here is your analysis:
{
  "summary": "Cool and damp with light rain through the afternoon.",
  "recommendations": ["Carry an umbrella", "Plan indoor visits", "Wear waterproof shoes"],
  "travelAdvice": "Allow extra time on the roads.",
  "clothingTips": ["Light rain jacket", "Layers"]
}"""

ACTIVITY_REPLY = """Some ideas:
- Visit the British Museum
- Afternoon tea in a covered market
* Take a river cruise
"""


def make_current(name="London", country="GB", lat=51.51, lon=-0.13, temperature=12,
                 description="light rain", humidity=82, wind_speed=15):
    return WeatherSnapshot(
        name=name,
        country=country,
        temperature=temperature,
        feels_like=temperature - 1,
        description=description,
        icon="10d",
        humidity=humidity,
        pressure=1012,
        wind_speed=wind_speed,
        wind_direction=200,
        visibility=10,
        clouds=75,
        sunrise=1760854800,
        sunset=1760892000,
        coordinates=Coordinates(lat=lat, lon=lon),
    )


def make_forecast(name="London", country="GB", pop=20):
    start = date.today()
    days = [
        ForecastDay(
            date=(start + timedelta(days=i)).isoformat(),
            label=(start + timedelta(days=i)).strftime("%a, %b %d"),
            temp_min=8 + i,
            temp_max=14 + i,
            description="light rain",
            icon="10d",
            humidity=80,
            wind_speed=12,
            pop=pop,
        )
        for i in range(5)
    ]
    return ForecastSnapshot(city=ForecastCity(name=name, country=country), days=days)


class FakeWeatherClient(OpenWeatherClient):
    """Provider stand-in keyed by lowercased location; unknown places are a 404."""

    def __init__(self, known=None, forecast_fails=False, provider_down=False):
        super().__init__("test-key")
        self.known = known if known is not None else {
            "london": make_current(),
            "london, gb": make_current(),
            "paris": make_current("Paris", "FR", 48.86, 2.35, temperature=18, description="clear sky"),
            "tokyo": make_current("Tokyo", "JP", 35.68, 139.65, temperature=24, description="few clouds"),
            "10001": make_current("New York", "US", 40.75, -73.99, temperature=16, description="clear sky"),
        }
        self.forecast_fails = forecast_fails
        self.provider_down = provider_down
        self.calls = []

    def _lookup(self, location):
        if self.provider_down:
            raise WeatherError("Current weather request failed: connection refused")
        key = location.strip().lower()
        if key not in self.known:
            raise WeatherError(f'Location "{location}" not found.', status_code=404)
        return self.known[key]

    async def current_weather(self, location):
        self.calls.append(("current", location))
        return self._lookup(location)

    async def forecast(self, location):
        self.calls.append(("forecast", location))
        if self.forecast_fails:
            raise WeatherError("Forecast failed (500): boom", status_code=500)
        current = self._lookup(location)
        return make_forecast(current.name, current.country)


def completion(text):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


def fake_openai(insight_reply=INSIGHT_REPLY, activity_reply=ACTIVITY_REPLY, error=None):
    """MagicMock shaped like AsyncOpenAI; answers by prompt kind."""
    client = MagicMock()

    def reply(**kwargs):
        prompt = kwargs["messages"][-1]["content"]
        if "specific activities" in prompt:
            return completion(activity_reply)
        return completion(insight_reply)

    client.chat.completions.create = AsyncMock(side_effect=error or reply)
    return client


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def weather():
    return FakeWeatherClient()


@pytest.fixture
def matcher(weather):
    return LocationMatcher(weather)


@pytest.fixture
def ai_off():
    return AIInsightGenerator("")


@pytest.fixture
def ai_on():
    return AIInsightGenerator("test-key", client=fake_openai())


def build_test_services(weather, ai):
    return Services(
        weather=weather,
        matcher=LocationMatcher(weather),
        ai=ai,
        context=LocationContextGenerator(),
    )


@pytest.fixture
def services(weather, ai_off):
    return build_test_services(weather, ai_off)


@pytest.fixture
def client(db, services):
    from skycast.main import create_app

    with TestClient(create_app(services=services)) as c:
        yield c


@pytest.fixture
def ai_client(db, weather, ai_on):
    from skycast.main import create_app

    with TestClient(create_app(services=build_test_services(weather, ai_on))) as c:
        yield c


def valid_range(start_offset=0, end_offset=3):
    today = date.today()
    return {
        "start_date": (today + timedelta(days=start_offset)).isoformat(),
        "end_date": (today + timedelta(days=end_offset)).isoformat(),
    }
