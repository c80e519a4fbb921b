"""
Weather service for the Weather Proxy.
"""

import argparse
import math
from typing import Any, Dict, Optional

from fastapi import Query

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import ConfigurationError, ValidationError
from shared.metrics import MetricsCollector

from service_weather.app.adapters.weather_client import WeatherClient
from service_weather.app.caching.expiring_cache import ExpiringCache


def build_cache_key(lat: str, lon: str) -> str:
    """Cache key for a coordinate pair, e.g. ``"1.0,2.0"``."""
    return f"{lat},{lon}"


def _parse_coordinate(name: str, raw: Optional[str], limit: float) -> str:
    value = (raw or "").strip()
    if not value:
        raise ValidationError(
            "Latitude and longitude query parameters 'lat' and 'lon' are required",
            details={"missing": name},
        )
    try:
        number = float(value)
    except ValueError:
        raise ValidationError(
            f"Query parameter '{name}' must be a number",
            details={name: value},
        ) from None
    if not math.isfinite(number) or abs(number) > limit:
        raise ValidationError(
            f"Query parameter '{name}' must be between -{limit:g} and {limit:g}",
            details={name: value},
        )
    return value


class WeatherService(BaseService):
    """Weather proxy service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        cache: Optional[ExpiringCache] = None,
        weather_client: Optional[WeatherClient] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        config = config or get_config("weather")
        config.validate_startup()
        super().__init__("weather", config=config, metrics=metrics)

        if cache is None:
            cache = ExpiringCache(
                self.config.cache_ttl_seconds,
                name="weather",
                metrics=self.metrics,
            )
        self.cache = cache
        self.weather_client = weather_client or WeatherClient(
            self.config.openweathermap_base_url,
            self.config.openweathermap_api_key,
            timeout=self.config.upstream_timeout_seconds,
            metrics=self.metrics,
        )

        self._setup_weather_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.weather_service = self

    def _setup_weather_routes(self):
        """Set up weather routes."""

        @self.app.get("/weather")
        async def get_weather(
            lat: Optional[str] = Query(default=None),
            lon: Optional[str] = Query(default=None),
        ) -> Dict[str, Any]:
            """Current weather for a coordinate pair, served from cache when fresh."""
            return await self.get_weather(lat, lon)

    async def get_weather(self, lat: Optional[str], lon: Optional[str]) -> Dict[str, Any]:
        """Validate coordinates and return cached or freshly fetched weather data."""
        lat_value = _parse_coordinate("lat", lat, 90.0)
        lon_value = _parse_coordinate("lon", lon, 180.0)
        key = build_cache_key(lat_value, lon_value)

        async def fetch() -> Dict[str, Any]:
            return await self.weather_client.fetch_weather(lat_value, lon_value)

        return await self.cache.get_or_fetch(key, fetch)

    async def _on_startup(self) -> None:
        self.cache.start_sweeper(self.config.sweep_interval_seconds)
        self.logger.info(
            "Weather service started",
            cache_expiration_seconds=self.cache.expiration,
            upstream=self.config.openweathermap_base_url,
        )

    async def _on_shutdown(self) -> None:
        await self.cache.stop_sweeper()
        await self.weather_client.close()
        self.logger.info("Weather service stopped")

    async def _check_dependencies(self) -> Dict[str, Any]:
        return {"cache": self.cache.stats()}


def create_app(config: Optional[ServiceConfig] = None):
    """Create FastAPI application."""
    service = WeatherService(config)
    return service.app


def main(argv=None) -> None:
    """Command-line entry point: run the weather service under uvicorn."""
    parser = argparse.ArgumentParser(description="Caching proxy for current weather data")
    parser.add_argument("--config", help="Path to a YAML config file (default: ./config.yaml)")
    parser.add_argument("--host", help="Bind address, overrides configuration")
    parser.add_argument("--port", type=int, help="Listen port, overrides configuration")
    args = parser.parse_args(argv)

    overrides: Dict[str, Any] = {}
    if args.host is not None:
        overrides["host"] = args.host
    if args.port is not None:
        overrides["port"] = args.port

    try:
        service = WeatherService(get_config("weather", config_file=args.config, **overrides))
    except ConfigurationError as exc:
        parser.exit(2, f"configuration error: {exc.message} {exc.details}\n")
    service.run()


if __name__ == "__main__":
    main()
