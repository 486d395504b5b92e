"""
Location context: facts, activity ideas, seasonal note, local time and
weather tips for a location.

Purely local. Nothing here calls out to a network and nothing here raises;
unknown places get a generic entry.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .schemas import ForecastSnapshot, WeatherSnapshot

logger = logging.getLogger(__name__)

MAX_ACTIVITIES = 6
MAX_TIPS = 4

SOUTHERN_HINTS = ("australia", "new zealand", "south africa")

NORTHERN_SEASONS = ["Winter", "Winter", "Spring", "Spring", "Spring", "Summer",
                    "Summer", "Summer", "Fall", "Fall", "Fall", "Winter"]
SOUTHERN_SEASONS = ["Summer", "Summer", "Fall", "Fall", "Fall", "Winter",
                    "Winter", "Winter", "Spring", "Spring", "Spring", "Summer"]

LOCAL_TIME_FORMAT = "%A %I:%M %p"


@dataclass(frozen=True)
class LocationInfo:
    name: str
    facts: List[str]
    activities: List[str]
    climate: str
    timezone: Optional[str] = None


@dataclass
class LocationContext:
    facts: List[str]
    activities: List[str]
    seasonal_info: str
    local_time: str
    timezone: str
    weather_tips: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


DEFAULT_LOCATIONS: Dict[str, LocationInfo] = {
    "london": LocationInfo(
        name="London, UK",
        facts=[
            "London experiences a temperate oceanic climate with mild temperatures year-round",
            "The city sees about 150 rainy days per year, so always carry an umbrella!",
            "London's weather is influenced by the Gulf Stream, keeping it warmer than other cities at similar latitudes",
        ],
        activities=["Visit museums on rainy days", "Enjoy Hyde Park when sunny", "Take river walks along Thames"],
        climate="Temperate oceanic with mild winters and cool summers",
        timezone="Europe/London",
    ),
    "new york": LocationInfo(
        name="New York City, USA",
        facts=[
            "NYC has a humid subtropical climate with hot summers and cold winters",
            "The city experiences all four seasons distinctly throughout the year",
            "Weather can change rapidly due to its location between land and ocean",
        ],
        activities=["Central Park activities", "Rooftop bars in summer", "Ice skating in winter"],
        climate="Humid subtropical with four distinct seasons",
        timezone="America/New_York",
    ),
    "tokyo": LocationInfo(
        name="Tokyo, Japan",
        facts=[
            "Tokyo has a humid subtropical climate with a distinct rainy season (tsuyu)",
            "Cherry blossom season (spring) is one of the most beautiful times to visit",
            "Summer can be very hot and humid with temperatures often exceeding 30°C",
        ],
        activities=["Cherry blossom viewing in spring", "Temple visits", "Seasonal festivals"],
        climate="Humid subtropical with distinct wet and dry seasons",
        timezone="Asia/Tokyo",
    ),
    "paris": LocationInfo(
        name="Paris, France",
        facts=[
            "Paris enjoys a temperate climate with relatively mild temperatures",
            "Spring and fall are considered the best times to visit for pleasant weather",
            "Summer days are long with sunset occurring after 9 PM",
        ],
        activities=["Seine river walks", "Outdoor café dining", "Park picnics"],
        climate="Temperate with warm summers and cool winters",
        timezone="Europe/Paris",
    ),
    "sydney": LocationInfo(
        name="Sydney, Australia",
        facts=[
            "Sydney has a humid subtropical climate with warm summers and mild winters",
            "Being in the Southern Hemisphere, seasons are opposite to the Northern Hemisphere",
            "The city enjoys over 260 sunny days per year",
        ],
        activities=["Beach activities", "Harbour walks", "Outdoor barbecues"],
        climate="Humid subtropical with mild winters and warm summers",
        timezone="Australia/Sydney",
    ),
    "dubai": LocationInfo(
        name="Dubai, UAE",
        facts=[
            "Dubai has a hot desert climate with very hot summers and warm winters",
            "Rainfall is extremely rare, occurring mainly in winter months",
            "Humidity can be high due to its coastal location on the Persian Gulf",
        ],
        activities=["Indoor malls during hot weather", "Desert safaris", "Beach activities in winter"],
        climate="Hot desert climate with minimal rainfall",
        timezone="Asia/Dubai",
    ),
    "mumbai": LocationInfo(
        name="Mumbai, India",
        facts=[
            "Mumbai has a tropical climate with three distinct seasons",
            "The monsoon season brings heavy rainfall from June to September",
            "High humidity throughout the year due to its coastal location",
        ],
        activities=["Monsoon photography", "Beach visits in winter", "Indoor activities during heavy rains"],
        climate="Tropical with distinct monsoon season",
        timezone="Asia/Kolkata",
    ),
    "singapore": LocationInfo(
        name="Singapore",
        facts=[
            "Singapore has a tropical rainforest climate with consistent temperatures year-round",
            "Afternoon thunderstorms are common, especially during monsoon seasons",
            "High humidity levels throughout the year, typically above 80%",
        ],
        activities=["Indoor attractions during rain", "Gardens and parks in good weather", "Night markets"],
        climate="Tropical rainforest with high humidity",
        timezone="Asia/Singapore",
    ),
}


def normalize_location_name(location: str) -> str:
    """'New York, NY' -> 'new york'"""
    name = re.sub(r",.*$", "", location.lower())
    return re.sub(r"\s+", " ", name).strip()


def generic_info(location: str) -> LocationInfo:
    return LocationInfo(
        name=location,
        facts=[
            "This location has its own unique weather patterns and climate characteristics",
            "Local weather can be influenced by geographical features like mountains, oceans, or elevation",
            "Weather conditions may vary significantly throughout different seasons",
        ],
        activities=["Explore local attractions", "Check local weather before outdoor activities",
                    "Enjoy seasonal activities"],
        climate="Varies by season and geographical location",
    )


class LocationContextGenerator:
    def __init__(self, table: Optional[Dict[str, LocationInfo]] = None):
        self._table: Dict[str, LocationInfo] = dict(table if table is not None else DEFAULT_LOCATIONS)

    def add_location_info(self, location: str, info: LocationInfo) -> None:
        self._table[normalize_location_name(location)] = info

    def available_locations(self) -> List[str]:
        return [info.name for info in self._table.values()]

    def find_location_info(self, location: str) -> LocationInfo:
        key = normalize_location_name(location)
        if key in self._table:
            return self._table[key]

        if key:
            for candidate, info in self._table.items():
                if candidate in key or key in candidate:
                    return info

        logger.debug("location_context_generic location=%s", location)
        return generic_info(location)

    def get_context(self, location: str, weather: WeatherSnapshot,
                    forecast: Optional[ForecastSnapshot] = None,
                    now: Optional[datetime] = None) -> LocationContext:
        now = now or datetime.now(timezone.utc)
        info = self.find_location_info(location)

        return LocationContext(
            facts=list(info.facts),
            activities=self.activities(weather, info.activities),
            seasonal_info=self.seasonal_info(f"{location} {info.name}", weather, now),
            local_time=self.local_time(info.timezone, now),
            timezone=info.timezone or "Unknown",
            weather_tips=self.weather_tips(weather, forecast),
        )

    @staticmethod
    def activities(weather: WeatherSnapshot, defaults: List[str]) -> List[str]:
        activities = list(defaults)
        temp = weather.temperature
        description = weather.description.lower()

        if temp > 25:
            activities.append("Great weather for outdoor activities and sightseeing")
            activities.append("Perfect for picnics and outdoor dining")
        elif temp < 5:
            activities.append("Ideal for cozy indoor activities and hot beverages")
            activities.append("Good time for museums and indoor entertainment")

        if "rain" in description:
            activities.append("Perfect weather for indoor museums and cafes")
            activities.append("Great time for shopping centers and galleries")
        elif "clear" in description or "sunny" in description:
            activities.append("Excellent conditions for walking tours and photography")
            activities.append("Perfect for outdoor markets and street food")

        if weather.wind_speed > 20:
            activities.append("Good conditions for wind sports if available")

        return activities[:MAX_ACTIVITIES]

    @staticmethod
    def seasonal_info(location: str, weather: WeatherSnapshot, now: datetime) -> str:
        lowered = location.lower()
        southern = any(hint in lowered for hint in SOUTHERN_HINTS)
        season = (SOUTHERN_SEASONS if southern else NORTHERN_SEASONS)[now.month - 1]
        temp = weather.temperature

        advice = f"Currently {season.lower()} season in this region. "
        if season == "Summer" and temp > 25:
            advice += "Typical warm summer weather - stay hydrated and use sun protection."
        elif season == "Winter" and temp < 10:
            advice += "Winter conditions - dress warmly and be prepared for shorter daylight hours."
        elif season == "Spring":
            advice += "Spring weather can be variable - layer clothing for changing conditions."
        elif season == "Fall":
            advice += "Autumn weather - great time for outdoor activities with comfortable temperatures."
        else:
            advice += "Weather conditions are moderate for this time of year."
        return advice

    @staticmethod
    def local_time(tz_name: Optional[str], now: datetime) -> str:
        if tz_name:
            try:
                return now.astimezone(ZoneInfo(tz_name)).strftime(LOCAL_TIME_FORMAT + " %Z")
            except (ZoneInfoNotFoundError, ValueError):
                logger.warning("unknown_timezone tz=%s", tz_name)
        return now.astimezone().strftime(LOCAL_TIME_FORMAT)

    @staticmethod
    def weather_tips(weather: WeatherSnapshot, forecast: Optional[ForecastSnapshot] = None) -> List[str]:
        tips: List[str] = []
        temp = weather.temperature
        humidity = weather.humidity
        description = weather.description.lower()

        if temp > 30:
            tips.append("Very hot weather - stay hydrated and avoid prolonged sun exposure")
            tips.append("Use SPF 30+ sunscreen and seek shade during peak hours (10 AM - 4 PM)")
        elif temp < 0:
            tips.append("Freezing temperatures - dress in layers and protect exposed skin")
            tips.append("Be cautious of icy conditions when walking or driving")
        elif temp < 10:
            tips.append("Cold weather - wear warm clothing and consider a jacket")

        if humidity > 80:
            tips.append("High humidity - you may feel warmer than the actual temperature")
            tips.append("Stay hydrated and take breaks in air-conditioned spaces if needed")
        elif humidity < 30:
            tips.append("Low humidity - use moisturizer and stay hydrated")

        if weather.wind_speed > 25:
            tips.append("Strong winds - secure loose items and be cautious with umbrellas")

        if "rain" in description:
            tips.append("Rainy conditions - carry an umbrella and wear waterproof clothing")
            tips.append("Allow extra time for travel due to wet conditions")
        elif "snow" in description:
            tips.append("Snowy conditions - wear appropriate footwear and dress warmly")
            tips.append("Check transportation schedules as they may be affected")
        elif "clear" in description or "sunny" in description:
            tips.append("Clear skies - great visibility and pleasant conditions for outdoor activities")

        if forecast and any(day.pop > 50 for day in forecast.days):
            tips.append("Rain expected in the coming days - plan indoor alternatives")

        return tips[:MAX_TIPS]
