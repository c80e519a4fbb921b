"""
Test helper functions and factory methods for the Weather Proxy.
"""

import json
from typing import Any, Callable, Dict, List, Optional

import httpx

from shared.config import ServiceConfig


class FakeClock:
    """Manually advanced monotonic clock for deterministic expiry tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class DummyMetrics:
    """Minimal metrics collector stub."""

    def __init__(self):
        self.counters = []
        self.gauges = []
        self.histograms = []

    def increment_counter(self, metric_name: str, **labels):
        self.counters.append((metric_name, labels))

    def set_gauge(self, metric_name: str, value: float, **labels):
        self.gauges.append((metric_name, value, labels))

    def observe_histogram(self, metric_name: str, value: float, **labels):
        self.histograms.append((metric_name, value, labels))

    def count(self, metric_name: str) -> int:
        return sum(1 for name, _ in self.counters if name == metric_name)


def create_weather_payload(*descriptions: str, **extra: Any) -> Dict[str, Any]:
    """Create an upstream current-weather body."""
    payload: Dict[str, Any] = {
        "weather": [{"description": description} for description in (descriptions or ("clear sky",))]
    }
    payload.update(extra)
    return payload


class FakeUpstream:
    """Stand-in for the weather provider behind an ``httpx.MockTransport``.

    Records every request; responds with ``payload`` unless ``handler`` is set.
    """

    def __init__(
        self,
        payload: Optional[Dict[str, Any]] = None,
        status_code: int = 200,
        handler: Optional[Callable[[httpx.Request], httpx.Response]] = None,
    ):
        self.payload = payload if payload is not None else create_weather_payload()
        self.status_code = status_code
        self.handler = handler
        self.requests: List[httpx.Request] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.handler is not None:
            return self.handler(request)
        return httpx.Response(
            self.status_code,
            content=json.dumps(self.payload).encode(),
            headers={"Content-Type": "application/json"},
        )

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def create_test_config(**overrides: Any) -> ServiceConfig:
    """Create a service config that ignores the environment and config files."""
    values: Dict[str, Any] = {
        "service_name": "weather",
        "env": "test",
        "log_level": "warning",
        "openweathermap_api_key": "test-api-key",
        "openweathermap_base_url": "http://upstream.test/data/2.5/weather",
        "upstream_timeout": "2s",
        "cache_expiration": "10m",
        "cache_sweep_interval": "1m",
        "port": 8080,
    }
    values.update(overrides)
    return ServiceConfig.model_construct(**values)
