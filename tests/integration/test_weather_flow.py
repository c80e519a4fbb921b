"""
Integration tests for the weather proxy flow: HTTP route, cache and upstream.
"""

import asyncio
import json

import httpx
import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_weather.app.adapters.weather_client import WeatherClient
from service_weather.app.main import WeatherService
from shared.test_helpers import FakeUpstream, create_test_config, create_weather_payload


def build_service(upstream: FakeUpstream, **config_overrides) -> WeatherService:
    config = create_test_config(**config_overrides)
    client = WeatherClient(
        config.openweathermap_base_url,
        config.openweathermap_api_key,
        timeout=config.upstream_timeout_seconds,
        transport=upstream.transport(),
    )
    return WeatherService(config, weather_client=client)


class TestWeatherFlow:
    """End-to-end flows through the ASGI app."""

    @pytest.mark.asyncio
    async def test_concurrent_requests_for_same_coordinates_hit_upstream_once(self):
        async def slow_handler(request):
            await asyncio.sleep(0.05)
            return httpx.Response(200, content=json.dumps(create_weather_payload("fog")).encode())

        upstream = FakeUpstream(handler=slow_handler)
        service = build_service(upstream)

        transport = httpx.ASGITransport(app=service.app)
        async with httpx.AsyncClient(transport=transport, base_url="http://weather.test") as client:
            responses = await asyncio.gather(*[
                client.get("/weather", params={"lat": "10.0", "lon": "20.0"})
                for _ in range(8)
            ])

        await service.weather_client.close()

        assert all(response.status_code == 200 for response in responses)
        assert all(response.json()["weather"][0]["description"] == "fog" for response in responses)
        assert upstream.calls == 1

    @pytest.mark.asyncio
    async def test_entry_expires_and_is_refetched(self):
        upstream = FakeUpstream(create_weather_payload("clear"))
        service = build_service(upstream, cache_expiration="50ms")

        transport = httpx.ASGITransport(app=service.app)
        async with httpx.AsyncClient(transport=transport, base_url="http://weather.test") as client:
            params = {"lat": "1.0", "lon": "2.0"}
            await client.get("/weather", params=params)
            await client.get("/weather", params=params)
            assert upstream.calls == 1

            await asyncio.sleep(0.06)
            response = await client.get("/weather", params=params)

        await service.weather_client.close()

        assert response.status_code == 200
        assert upstream.calls == 2

    @pytest.mark.asyncio
    async def test_failed_fetch_is_retried_on_next_request(self):
        responses = iter([
            httpx.Response(503, content=b"maintenance"),
            httpx.Response(200, content=json.dumps(create_weather_payload("rain")).encode()),
        ])
        upstream = FakeUpstream(handler=lambda request: next(responses))
        service = build_service(upstream)

        transport = httpx.ASGITransport(app=service.app)
        async with httpx.AsyncClient(transport=transport, base_url="http://weather.test") as client:
            params = {"lat": "1.0", "lon": "2.0"}
            failed = await client.get("/weather", params=params)
            recovered = await client.get("/weather", params=params)

        await service.weather_client.close()

        assert failed.status_code == 500
        assert failed.json()["details"]["status_code"] == 503
        assert recovered.status_code == 200
        assert recovered.json()["weather"] == [{"description": "rain"}]
        assert upstream.calls == 2

    @pytest.mark.asyncio
    async def test_slow_upstream_does_not_block_cached_coordinates(self):
        release = asyncio.Event()

        async def handler(request):
            if request.url.params["lat"] == "5.0":
                await release.wait()
            return httpx.Response(200, content=json.dumps(create_weather_payload("haze")).encode())

        upstream = FakeUpstream(handler=handler)
        service = build_service(upstream)
        await service.cache.add("1.0,2.0", create_weather_payload("cached"))

        transport = httpx.ASGITransport(app=service.app)
        async with httpx.AsyncClient(transport=transport, base_url="http://weather.test") as client:
            slow = asyncio.create_task(client.get("/weather", params={"lat": "5.0", "lon": "5.0"}))
            await asyncio.sleep(0.01)

            cached = await asyncio.wait_for(
                client.get("/weather", params={"lat": "1.0", "lon": "2.0"}),
                timeout=1.0,
            )
            assert cached.json()["weather"] == [{"description": "cached"}]
            assert not slow.done()

            release.set()
            assert (await slow).status_code == 200

        await service.weather_client.close()
