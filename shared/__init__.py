"""
Shared utilities for the Payments Access Layer.

This package aggregates common building blocks consumed by all services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request and tenant correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- secrets_manager: Encryption of tenant secrets at rest
- base_service: FastAPI service scaffolding
- test_helpers: Factories and an in-process gateway stub for tests

Any cross-service logic should live here to avoid import cycles across
service packages. Do not import from service packages into shared/.
"""
