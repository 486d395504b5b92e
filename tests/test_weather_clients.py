from datetime import datetime, timezone

import httpx
import pytest

from skycast.weather_clients import (
    OpenWeatherClient,
    WeatherError,
    is_coordinates,
    location_params,
)

CURRENT_PAYLOAD = {
    "coord": {"lat": 51.5074, "lon": -0.1278},
    "weather": [{"main": "Rain", "description": "light rain", "icon": "10d"}],
    "main": {"temp": 12.6, "feels_like": 11.4, "pressure": 1012, "humidity": 82},
    "visibility": 10000,
    "wind": {"speed": 5, "deg": 200},
    "clouds": {"all": 75},
    "sys": {"country": "GB", "sunrise": 1760854800, "sunset": 1760892000},
    "name": "London",
}


def ts(day, hour):
    return int(datetime(2026, 10, day, hour, tzinfo=timezone.utc).timestamp())


def forecast_step(dt, temp_min, temp_max, description="light rain", pop=0.35):
    return {
        "dt": dt,
        "main": {"temp": (temp_min + temp_max) / 2, "temp_min": temp_min, "temp_max": temp_max, "humidity": 70},
        "weather": [{"description": description, "icon": "10d"}],
        "wind": {"speed": 2.5},
        "pop": pop,
    }


def forecast_payload(tz_offset=0):
    steps = []
    for day in range(19, 26):
        steps.append(forecast_step(ts(day, 6), 8, 11))
        steps.append(forecast_step(ts(day, 15), 10, 16, description="overcast clouds", pop=0.9))
    return {"city": {"name": "London", "country": "GB", "timezone": tz_offset}, "list": steps}


def make_client(handler):
    return OpenWeatherClient("secret", transport=httpx.MockTransport(handler))


def test_is_coordinates():
    assert is_coordinates("40.7128,-74.0060")
    assert is_coordinates(" 40.7128 , -74.0060 ")
    assert is_coordinates("51,0")
    assert not is_coordinates("10001")
    assert not is_coordinates("London")
    assert not is_coordinates("London, GB")


def test_location_params_by_kind():
    assert location_params("40.7128,-74.0060") == {"lat": 40.7128, "lon": -74.006}
    assert location_params("10001") == {"zip": "10001,US"}
    assert location_params("10001-1234") == {"zip": "10001,US"}
    assert location_params("10001,gb") == {"zip": "10001,GB"}
    assert location_params("  New York ") == {"q": "New York"}


def test_location_params_rejects_out_of_range_coordinates():
    with pytest.raises(WeatherError) as exc:
        location_params("95.0,10.0")
    assert exc.value.status_code == 400
    assert exc.value.is_bad_location

    with pytest.raises(WeatherError):
        location_params("45.0,181.0")


@pytest.mark.anyio
async def test_current_weather_is_normalized():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json=CURRENT_PAYLOAD)

    snapshot = await make_client(handler).current_weather("London")

    assert seen["path"] == "/data/2.5/weather"
    assert seen["params"]["q"] == "London"
    assert seen["params"]["units"] == "metric"
    assert seen["params"]["appid"] == "secret"

    assert snapshot.name == "London"
    assert snapshot.country == "GB"
    assert snapshot.temperature == 13
    assert snapshot.feels_like == 11
    assert snapshot.wind_speed == 18
    assert snapshot.visibility == 10
    assert snapshot.clouds == 75
    assert snapshot.coordinates.lat == 51.5074


def test_null_optional_fields_default_to_zero():
    payload = {
        **CURRENT_PAYLOAD,
        "main": {"temp": 12.6, "feels_like": None, "pressure": None, "humidity": None},
        "visibility": None,
        "wind": {"speed": None, "deg": None},
        "clouds": {"all": None},
        "sys": {"country": None, "sunrise": None, "sunset": None},
    }

    snapshot = OpenWeatherClient.normalize_current(payload)

    assert snapshot.feels_like == 13
    assert snapshot.visibility == 0
    assert snapshot.wind_speed == 0
    assert snapshot.humidity == 0
    assert snapshot.country == ""
    assert snapshot.sunrise == 0


def test_forecast_tolerates_null_fields():
    step = forecast_step(ts(19, 6), 8, 11)
    step["main"]["temp_min"] = None
    step["wind"] = {"speed": None}
    step["pop"] = None

    day = OpenWeatherClient.summarize_to_5_days({"city": {"timezone": None}, "list": [step]}).days[0]

    assert day.temp_min == 10
    assert day.wind_speed == 0
    assert day.pop == 0


@pytest.mark.anyio
async def test_not_found_is_a_bad_location():
    client = make_client(lambda request: httpx.Response(404, json={"cod": "404", "message": "city not found"}))

    with pytest.raises(WeatherError) as exc:
        await client.current_weather("Atlantis")

    assert exc.value.status_code == 404
    assert exc.value.is_bad_location
    assert "Atlantis" in str(exc.value)


@pytest.mark.anyio
async def test_server_error_is_not_a_bad_location():
    client = make_client(lambda request: httpx.Response(502, text="bad gateway"))

    with pytest.raises(WeatherError) as exc:
        await client.current_weather("London")

    assert exc.value.status_code == 502
    assert not exc.value.is_bad_location


@pytest.mark.anyio
async def test_transport_error_becomes_weather_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(WeatherError) as exc:
        await make_client(handler).current_weather("London")
    assert exc.value.status_code is None


@pytest.mark.anyio
async def test_malformed_body_becomes_weather_error():
    with pytest.raises(WeatherError):
        await make_client(lambda request: httpx.Response(200, content=b"<html>")).current_weather("London")

    with pytest.raises(WeatherError):
        await make_client(lambda request: httpx.Response(200, json={"name": "London"})).current_weather("London")


@pytest.mark.anyio
async def test_forecast_is_summarized_to_five_days():
    client = make_client(lambda request: httpx.Response(200, json=forecast_payload()))

    forecast = await client.forecast("London")

    assert forecast.city.name == "London"
    assert len(forecast.days) == 5
    first = forecast.days[0]
    assert first.date == "2026-10-19"
    assert first.label == "Mon, Oct 19"
    assert first.temp_min == 8
    assert first.temp_max == 16
    # first step of the day wins for the descriptive fields
    assert first.description == "light rain"
    assert first.pop == 35
    assert first.wind_speed == 9


def test_forecast_groups_by_city_local_day():
    payload = {
        "city": {"name": "Honolulu", "country": "US", "timezone": -10 * 3600},
        "list": [
            forecast_step(ts(19, 18), 24, 27),
            # 06:00 UTC on the 20th is still the evening of the 19th locally
            forecast_step(ts(20, 6), 22, 25),
            forecast_step(ts(20, 18), 23, 28),
        ],
    }

    forecast = OpenWeatherClient.summarize_to_5_days(payload)

    assert [d.date for d in forecast.days] == ["2026-10-19", "2026-10-20"]
    assert forecast.days[0].temp_min == 22
    assert forecast.days[0].temp_max == 27


@pytest.mark.anyio
async def test_fetch_all_tolerates_forecast_failure():
    def handler(request):
        if request.url.path.endswith("/forecast"):
            return httpx.Response(500, text="oops")
        return httpx.Response(200, json=CURRENT_PAYLOAD)

    current, forecast = await make_client(handler).fetch_all("London")

    assert current.name == "London"
    assert forecast is None


@pytest.mark.anyio
async def test_fetch_all_propagates_current_failure():
    def handler(request):
        if request.url.path.endswith("/forecast"):
            return httpx.Response(200, json=forecast_payload())
        return httpx.Response(404, json={"message": "city not found"})

    with pytest.raises(WeatherError) as exc:
        await make_client(handler).fetch_all("Nowhere")
    assert exc.value.status_code == 404


@pytest.mark.anyio
async def test_zip_code_is_sent_as_zip_param():
    seen = {}

    def handler(request):
        seen.update(request.url.params)
        return httpx.Response(200, json=CURRENT_PAYLOAD)

    await make_client(handler).current_weather("10001")
    assert seen["zip"] == "10001,US"
    assert "q" not in seen
