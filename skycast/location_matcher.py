"""
Location resolution.

The weather provider doubles as our gazetteer: if it answers a current-weather
lookup for the string, that is an exact, authoritative match. Only when it
does not (typo, partial name, provider down) do we fall back to approximate
matching against a small list of major cities.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass
from difflib import SequenceMatcher
from typing import List, Optional

from .schemas import Coordinates
from .weather_clients import OpenWeatherClient, WeatherError

logger = logging.getLogger(__name__)

# A match above this confidence is trusted enough to fetch by its canonical name
CONFIDENT_MATCH = 0.8

# Fuzzy candidates further away than this are dropped (distance = 1 - similarity)
MAX_DISTANCE = 0.4

PLACEHOLDER_COORDINATES = Coordinates(lat=0.0, lon=0.0)


@dataclass(frozen=True)
class GazetteerEntry:
    name: str
    country: str
    state: Optional[str] = None
    lat: float = 0.0
    lon: float = 0.0

    def search_forms(self) -> List[str]:
        forms = [self.name, f"{self.name}, {self.country}"]
        if self.state:
            forms += [f"{self.name}, {self.state}", f"{self.name}, {self.state}, {self.country}"]
        return forms


@dataclass(frozen=True)
class LocationMatch:
    name: str
    country: str
    coordinates: Coordinates
    confidence: float
    state: Optional[str] = None
    source: str = "provider"


DEFAULT_GAZETTEER = [
    GazetteerEntry("New York", "US", "NY", 40.7128, -74.0060),
    GazetteerEntry("London", "GB", None, 51.5074, -0.1278),
    GazetteerEntry("Tokyo", "JP", None, 35.6762, 139.6503),
    GazetteerEntry("Paris", "FR", None, 48.8566, 2.3522),
    GazetteerEntry("Sydney", "AU", None, -33.8688, 151.2093),
    GazetteerEntry("Los Angeles", "US", "CA", 34.0522, -118.2437),
    GazetteerEntry("Chicago", "US", "IL", 41.8781, -87.6298),
    GazetteerEntry("Toronto", "CA", None, 43.6532, -79.3832),
    GazetteerEntry("Berlin", "DE", None, 52.5200, 13.4050),
    GazetteerEntry("Mumbai", "IN", None, 19.0760, 72.8777),
    GazetteerEntry("Singapore", "SG", None, 1.3521, 103.8198),
    GazetteerEntry("Dubai", "AE", None, 25.2048, 55.2708),
    GazetteerEntry("São Paulo", "BR", None, -23.5505, -46.6333),
    GazetteerEntry("Mexico City", "MX", None, 19.4326, -99.1332),
    GazetteerEntry("Moscow", "RU", None, 55.7558, 37.6173),
]


def normalize_location(location: str) -> str:
    """Lowercase, trim, collapse whitespace."""
    return re.sub(r"\s+", " ", location.strip().lower())


def _fold(text: str) -> str:
    # "São Paulo" and "sao paulo" should compare equal
    decomposed = unicodedata.normalize("NFKD", normalize_location(text))
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def similarity(a: str, b: str) -> float:
    """Normalized similarity in [0, 1]."""
    return SequenceMatcher(None, _fold(a), _fold(b)).ratio()


class LocationMatcher:
    def __init__(self, weather: OpenWeatherClient, gazetteer: Optional[List[GazetteerEntry]] = None):
        self.weather = weather
        self._gazetteer: List[GazetteerEntry] = list(gazetteer if gazetteer is not None else DEFAULT_GAZETTEER)

    @property
    def gazetteer(self) -> List[GazetteerEntry]:
        return list(self._gazetteer)

    def add_location(self, name: str, country: str, state: Optional[str] = None,
                     lat: float = 0.0, lon: float = 0.0) -> GazetteerEntry:
        """Administrative append; the gazetteer is otherwise read-only."""
        entry = GazetteerEntry(name, country, state, lat, lon)
        self._gazetteer.append(entry)
        logger.info("gazetteer_location_added name=%s country=%s", name, country)
        return entry

    async def match(self, location: str) -> List[LocationMatch]:
        """
        Ranked candidates for a free-form location.

        Empty list means "location not found"; callers must not create a
        snapshot in that case.
        """
        try:
            current = await self.weather.current_weather(location)
        except WeatherError as e:
            logger.info("location_lookup_fallback location=%s error=%s", location, e)
            return self.fuzzy_match(location)

        return [LocationMatch(
            name=current.name or location.strip(),
            country=current.country,
            coordinates=current.coordinates or PLACEHOLDER_COORDINATES,
            confidence=1.0,
        )]

    def fuzzy_match(self, location: str) -> List[LocationMatch]:
        if not location.strip():
            return []

        matches: List[LocationMatch] = []
        for entry in self._gazetteer:
            score = max(similarity(location, form) for form in entry.search_forms())
            distance = 1.0 - score
            if distance > MAX_DISTANCE:
                continue
            matches.append(LocationMatch(
                name=entry.name,
                country=entry.country,
                state=entry.state,
                coordinates=Coordinates(lat=entry.lat, lon=entry.lon),
                confidence=round(1.0 - distance, 4),
                source="gazetteer",
            ))

        matches.sort(key=lambda m: m.confidence, reverse=True)
        return matches


def lookup_string(matches: List[LocationMatch], raw: str) -> str:
    """
    What to send to the provider for the actual snapshot fetch.

    - provider matches: the raw input, which the provider already understood
      (keeps ZIPs and coordinates precise)
    - confident gazetteer matches: the canonical "name, country"
    - anything else: the raw input, and let the provider decide
    """
    best = matches[0]
    if best.source == "provider":
        return raw
    if best.confidence > CONFIDENT_MATCH:
        return f"{best.name}, {best.country}"
    return raw
