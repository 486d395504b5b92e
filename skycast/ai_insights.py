"""
AI weather insights via an OpenAI-compatible chat completions gateway
(OpenRouter by default).

One request per call, no retries, no streaming. Gateway failures surface as
AIUnavailableError so callers can carry on without an insight; reply parsing
never fails, it only degrades.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, List, Optional

from openai import AsyncOpenAI, OpenAIError

from .errors import AIUnavailableError
from .schemas import ForecastSnapshot, WeatherSnapshot

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert meteorologist and travel advisor. Provide practical, concise "
    "weather insights and recommendations. Keep responses under 200 words and focus "
    "on actionable advice. Always maintain a friendly, professional tone."
)

JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
BULLET_RE = re.compile(r"^\s*(?:[-•*]\s*|\d+[.)]\s+)")

DEFAULT_RECOMMENDATIONS = ["Check current conditions before going out"]
GENERIC_ACTIVITIES = [
    "Check local weather before outdoor activities",
    "Dress appropriately for current conditions",
    "Stay hydrated and sun-protected",
]


@dataclass
class InsightFields:
    """Parsed reply; everything the store needs to persist an AIInsight."""
    insight: str
    recommendations: List[str]
    weather_summary: str
    model: str
    travel_advice: Optional[str] = None
    clothing_recommendations: Optional[List[str]] = None


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, list):
        return " ".join(_as_text(v) for v in value if v)
    return str(value)


def _as_list(value: Any) -> List[str]:
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return [_as_text(v) for v in value if _as_text(v)]
    return [_as_text(value)]


def _strip_bullet(line: str) -> str:
    return BULLET_RE.sub("", line, count=1).strip()


def build_weather_prompt(location: str, weather: WeatherSnapshot,
                         forecast: Optional[ForecastSnapshot] = None) -> str:
    lines = [
        f"Analyze the weather for {location}:",
        "",
        "CURRENT CONDITIONS:",
        f"- Temperature: {weather.temperature}°C (feels like {weather.feels_like}°C)",
        f"- Conditions: {weather.description}",
        f"- Humidity: {weather.humidity}%",
        f"- Wind: {weather.wind_speed} km/h",
        f"- Visibility: {weather.visibility} km",
        f"- Pressure: {weather.pressure} hPa",
    ]

    if forecast and forecast.days:
        lines += ["", "UPCOMING FORECAST:"]
        for day in forecast.days[:3]:
            lines.append(f"- {day.label}: {day.temp_min}-{day.temp_max}°C, {day.description}")

    lines += [
        "",
        "Provide:",
        "1. A brief weather summary (1-2 sentences)",
        "2. 3-4 practical recommendations for activities/clothing",
        "3. Travel advice if relevant",
        "4. Any weather alerts or considerations",
        "",
        "Format as JSON with keys: summary, recommendations, travelAdvice, clothingTips",
    ]
    return "\n".join(lines)


def parse_ai_response(response: str, model: str) -> InsightFields:
    """
    Turn a free-text reply into insight fields.

    1) An embedded JSON object with summary/recommendations/travelAdvice/clothingTips
    2) Otherwise line heuristics: "recommend"/"suggest"/"should" lines are
       recommendations, a "travel"/"drive"/"transport" line is travel advice,
       the first remaining line is the summary
    """
    match = JSON_OBJECT_RE.search(response)
    if match:
        try:
            parsed = json.loads(match.group(0))
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            summary = _as_text(parsed.get("summary"))
            clothing = _as_list(parsed.get("clothingTips", parsed.get("clothing_tips")))
            return InsightFields(
                insight=summary or response.strip(),
                recommendations=_as_list(parsed.get("recommendations")) or list(DEFAULT_RECOMMENDATIONS),
                weather_summary=summary,
                travel_advice=_as_text(parsed.get("travelAdvice", parsed.get("travel_advice"))) or None,
                clothing_recommendations=clothing or None,
                model=model,
            )

    recommendations: List[str] = []
    insight = ""
    travel_advice = ""

    for line in response.splitlines():
        clean = line.strip()
        if not clean:
            continue
        lowered = clean.lower()
        if "recommend" in lowered or "suggest" in lowered or "should" in lowered:
            recommendations.append(_strip_bullet(clean))
        elif "travel" in lowered or "drive" in lowered or "transport" in lowered:
            travel_advice = _strip_bullet(clean)
        elif not insight:
            insight = _strip_bullet(clean)

    if not insight:
        text = response.strip()
        insight = text if len(text) <= 150 else text[:150] + "..."

    return InsightFields(
        insight=insight,
        recommendations=recommendations or list(DEFAULT_RECOMMENDATIONS),
        weather_summary=insight,
        travel_advice=travel_advice or None,
        model=model,
    )


def extract_bullets(response: str) -> List[str]:
    items = []
    for line in response.splitlines():
        if BULLET_RE.match(line):
            item = _strip_bullet(line)
            if item:
                items.append(item)
    return items


class AIInsightGenerator:
    def __init__(
        self,
        api_key: str,
        base_url: str = "https://openrouter.ai/api/v1",
        model: str = "microsoft/wizardlm-2-8x22b",
        timeout_s: float = 10.0,
        app_url: str = "http://localhost:8000",
        app_name: str = "SkyCast Weather",
        client: Optional[Any] = None,
    ):
        self.api_key = api_key
        self.model = model
        self._client = client
        if self._client is None and api_key:
            self._client = AsyncOpenAI(
                api_key=api_key,
                base_url=base_url,
                timeout=timeout_s,
                max_retries=0,
                default_headers={"HTTP-Referer": app_url, "X-Title": app_name},
            )
        if not api_key:
            logger.warning("ai_gateway_disabled reason=missing_api_key")

    def is_available(self) -> bool:
        """True only when a credential is configured."""
        return bool(self.api_key) and self._client is not None

    async def _complete(self, prompt: str) -> str:
        if not self.is_available():
            raise AIUnavailableError("AI gateway API key not configured")

        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=500,
                temperature=0.7,
            )
        except (OpenAIError, asyncio.TimeoutError) as e:
            logger.warning("ai_gateway_error model=%s error=%s", self.model, e)
            raise AIUnavailableError(f"AI gateway request failed: {e}") from e

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError):
            content = None
        return content or "Unable to generate insight"

    async def generate(self, location: str, weather: WeatherSnapshot,
                       forecast: Optional[ForecastSnapshot] = None) -> InsightFields:
        """Raises AIUnavailableError when the gateway can't be used; parsing never raises."""
        reply = await self._complete(build_weather_prompt(location, weather, forecast))
        fields = parse_ai_response(reply, self.model)
        logger.info("ai_insight_generated location=%s recommendations=%d", location, len(fields.recommendations))
        return fields

    async def activity_suggestions(self, location: str, weather: WeatherSnapshot,
                                   start: date, end: date) -> List[str]:
        prompt = (
            f"Based on the weather in {location} ({weather.temperature}°C, {weather.description}) "
            f"during {start.isoformat()} to {end.isoformat()}, suggest 3-4 specific activities "
            "that would be ideal for these conditions. Be practical and location-appropriate. "
            "Answer as a bulleted list."
        )
        try:
            reply = await self._complete(prompt)
        except AIUnavailableError as e:
            logger.info("activity_suggestions_fallback location=%s error=%s", location, e)
            return list(GENERIC_ACTIVITIES)

        return extract_bullets(reply) or list(GENERIC_ACTIVITIES)

    async def location_facts(self, location: str) -> str:
        prompt = (
            f"Provide 2-3 interesting facts about {location} related to its climate, geography, "
            "or notable weather patterns. Keep it under 100 words and focus on weather-relevant information."
        )
        try:
            return await self._complete(prompt)
        except AIUnavailableError as e:
            logger.info("location_facts_fallback location=%s error=%s", location, e)
            return f"{location} is a location with varied weather patterns throughout the year."
