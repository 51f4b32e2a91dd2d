"""Weather lookup via the Open-Meteo geocoding and forecast APIs."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from aide.tools.base import Tool, ToolContext

LOGGER = logging.getLogger(__name__)

GEOCODING_URL = "https://geocoding-api.open-meteo.com/v1/search"
FORECAST_URL = "https://api.open-meteo.com/v1/forecast"

_TIMEOUT_SECONDS = 15.0
_MAX_DAYS = 7

# WMO weather interpretation codes.
_WEATHER_CODES = {
    0: "clear sky",
    1: "mainly clear",
    2: "partly cloudy",
    3: "overcast",
    45: "fog",
    48: "depositing rime fog",
    51: "light drizzle",
    53: "drizzle",
    55: "dense drizzle",
    56: "freezing drizzle",
    57: "dense freezing drizzle",
    61: "light rain",
    63: "rain",
    65: "heavy rain",
    66: "freezing rain",
    67: "heavy freezing rain",
    71: "light snow",
    73: "snow",
    75: "heavy snow",
    77: "snow grains",
    80: "light rain showers",
    81: "rain showers",
    82: "violent rain showers",
    85: "snow showers",
    86: "heavy snow showers",
    95: "thunderstorm",
    96: "thunderstorm with hail",
    99: "thunderstorm with heavy hail",
}


def describe_weather_code(code: Any) -> str:
    try:
        return _WEATHER_CODES.get(int(code), f"weather code {code}")
    except (TypeError, ValueError):
        return "unknown conditions"


class GetWeatherTool(Tool):
    """Current conditions and a short daily forecast for a place name."""

    name = "get_weather"
    description = "Get current weather and a daily forecast for a city or place."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "location": {"type": "string", "description": "City or place name, e.g. 'Berlin'."},
            "days": {
                "type": "integer",
                "description": f"Forecast days to include (default 3, max {_MAX_DAYS}).",
            },
        },
        "required": ["location"],
        "additionalProperties": False,
    }

    async def run(self, context: ToolContext, **kwargs: Any) -> str:
        location = str(kwargs["location"]).strip()
        if not location:
            return "Error: location must not be empty."
        days = max(1, min(int(kwargs.get("days") or 3), _MAX_DAYS))

        async with httpx.AsyncClient(timeout=_TIMEOUT_SECONDS) as client:
            geo_response = await client.get(
                GEOCODING_URL,
                params={"name": location, "count": 1, "language": "en", "format": "json"},
            )
            geo_response.raise_for_status()
            places = geo_response.json().get("results") or []
            if not places:
                return f'Could not find a location named "{location}".'
            place = places[0]

            forecast_response = await client.get(
                FORECAST_URL,
                params={
                    "latitude": place["latitude"],
                    "longitude": place["longitude"],
                    "current": "temperature_2m,apparent_temperature,relative_humidity_2m,weather_code,wind_speed_10m",
                    "daily": "weather_code,temperature_2m_max,temperature_2m_min,precipitation_probability_max",
                    "timezone": "auto",
                    "forecast_days": days,
                },
            )
            forecast_response.raise_for_status()
            forecast = forecast_response.json()

        LOGGER.info("Weather lookup for %r resolved to %s", location, place.get("name"))
        return _format_forecast(place, forecast)


def _format_forecast(place: dict[str, Any], forecast: dict[str, Any]) -> str:
    label = ", ".join(str(part) for part in (place.get("name"), place.get("country")) if part)
    lines = [f"Weather for {label}:"]

    current = forecast.get("current") or {}
    if current:
        lines.append(
            f"Now: {current.get('temperature_2m')}°C "
            f"(feels like {current.get('apparent_temperature')}°C), "
            f"{describe_weather_code(current.get('weather_code'))}, "
            f"humidity {current.get('relative_humidity_2m')}%, "
            f"wind {current.get('wind_speed_10m')} km/h"
        )

    daily = forecast.get("daily") or {}
    dates = daily.get("time") or []
    for i, day in enumerate(dates):
        rain = (daily.get("precipitation_probability_max") or [None] * len(dates))[i]
        lines.append(
            f"{day}: {describe_weather_code(daily['weather_code'][i])}, "
            f"{daily['temperature_2m_min'][i]}–{daily['temperature_2m_max'][i]}°C"
            + (f", {rain}% chance of rain" if rain is not None else "")
        )
    return "\n".join(lines)
