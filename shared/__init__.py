"""
Shared utilities for the client cache layer.

This package aggregates common building blocks consumed by every component:

- config: Cache settings via pydantic-settings
- logging: Structured logging with identity correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry helpers for user-awaited fetches
- test_helpers: Data factories and simulated tabs for tests

Only test_helpers may import from client_cache.
"""
