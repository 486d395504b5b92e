"""
Long-lived collaborators, constructed once at startup and handed to request
handlers through app.state (tests swap in fakes the same way).
"""

from __future__ import annotations

from dataclasses import dataclass

from .ai_insights import AIInsightGenerator
from .location_context import LocationContextGenerator
from .location_matcher import LocationMatcher
from .settings import Settings
from .weather_clients import OpenWeatherClient


@dataclass
class Services:
    weather: OpenWeatherClient
    matcher: LocationMatcher
    ai: AIInsightGenerator
    context: LocationContextGenerator


def build_services(settings: Settings) -> Services:
    weather = OpenWeatherClient(
        settings.openweather_api_key,
        base_url=settings.openweather_base_url,
        timeout_s=settings.http_timeout_s,
    )
    ai = AIInsightGenerator(
        settings.openrouter_api_key,
        base_url=settings.openrouter_base_url,
        model=settings.ai_model,
        timeout_s=settings.ai_timeout_s,
        app_url=settings.app_url,
        app_name=settings.app_name,
    )
    return Services(
        weather=weather,
        matcher=LocationMatcher(weather),
        ai=ai,
        context=LocationContextGenerator(),
    )
