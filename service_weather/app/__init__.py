"""
Weather Service package for the Weather Proxy.

The service fronts the OpenWeatherMap current-weather API and caches its
responses in process for a configurable TTL.

Structure:
- app.main: FastAPI app, routes, middleware wiring and CLI entry point.
- app.adapters: HTTP client for the upstream weather provider.
- app.caching: Expiring single-flight cache.
"""
