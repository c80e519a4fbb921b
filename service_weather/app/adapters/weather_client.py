"""
OpenWeatherMap client for the Weather Service.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from shared.errors import ExternalServiceError, UpstreamPayloadError
from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


PROVIDER = "openweathermap"


class WeatherCondition(BaseModel):
    """One entry of the upstream ``weather`` list."""

    model_config = ConfigDict(extra="allow")

    description: str


class WeatherData(BaseModel):
    """Upstream current-weather payload.

    Only the condition descriptions are required; every other upstream field is
    kept so the payload can be returned to clients verbatim.
    """

    model_config = ConfigDict(extra="allow")

    weather: List[WeatherCondition] = []

    @property
    def descriptions(self) -> List[str]:
        return [condition.description for condition in self.weather]


class WeatherClient:
    """Client for the upstream current-weather endpoint."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 10.0,
        metrics: Optional["MetricsCollector"] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout
        self.metrics = metrics
        self.logger = get_logger("weather.client")
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def fetch_weather(self, lat: str, lon: str) -> Dict[str, Any]:
        """Fetch current weather for a coordinate pair.

        Raises ``ExternalServiceError`` on transport failures and non-2xx
        responses, and ``UpstreamPayloadError`` when the body is not a valid
        weather payload.
        """
        params = {"lat": lat, "lon": lon, "appid": self.api_key}
        log_params = {"lat": lat, "lon": lon}
        start_time = time.time()

        try:
            response = await self._client.get(self.base_url, params=params)
        except httpx.HTTPError as exc:
            self._observe("transport_error", start_time)
            self.logger.error(
                "Weather request failed",
                params=log_params,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise ExternalServiceError(
                service=PROVIDER,
                message=str(exc) or type(exc).__name__,
                details={"params": log_params},
            ) from exc

        if not response.is_success:
            self._observe("http_error", start_time)
            self.logger.error(
                "Weather request returned unexpected status",
                params=log_params,
                status_code=response.status_code,
                response=response.text,
            )
            raise ExternalServiceError(
                service=PROVIDER,
                message=f"Unexpected status {response.status_code}",
                details={"status_code": response.status_code, "body": response.text},
            )

        try:
            payload = WeatherData.model_validate(response.json())
        except ValueError as exc:
            # Covers JSON decode errors and pydantic validation errors alike.
            self._observe("payload_error", start_time)
            self.logger.error("Weather payload malformed", params=log_params, error=str(exc))
            details: Dict[str, Any] = {"body": response.text}
            if isinstance(exc, PydanticValidationError):
                details["errors"] = [error["msg"] for error in exc.errors()]
            raise UpstreamPayloadError(
                service=PROVIDER,
                message=f"Malformed weather payload: {exc}",
                details=details,
            ) from exc

        self._observe("success", start_time)
        self.logger.debug(
            "Weather data retrieved",
            params=log_params,
            descriptions=payload.descriptions,
        )
        return payload.model_dump(mode="json")

    def _observe(self, outcome: str, start_time: float) -> None:
        if not self.metrics:
            return
        self.metrics.increment_counter("upstream_requests_total", provider=PROVIDER, outcome=outcome)
        self.metrics.observe_histogram(
            "upstream_request_duration_seconds",
            time.time() - start_time,
            provider=PROVIDER,
        )
