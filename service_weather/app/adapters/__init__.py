"""
Adapters package for the Weather Service.

Contains the HTTP client wrapper for the upstream weather provider. The
adapter encapsulates:

- Base URL, credentials and request shape
- Timeouts
- Error handling that maps to shared errors

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .weather_client import WeatherClient, WeatherCondition, WeatherData

__all__ = ["WeatherClient", "WeatherCondition", "WeatherData"]
