"""
Shared utilities for the Weather Proxy.

This package aggregates common building blocks consumed by services:

- config: Service configuration via pydantic-settings and YAML
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- base_service: FastAPI app scaffolding (health, metrics, error handlers)

Any cross-service logic should live here to avoid import cycles across
service packages. Do not import from service_* packages into shared/.
"""
