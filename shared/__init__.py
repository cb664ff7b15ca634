"""
Shared utilities for the Event Context layer.

This package aggregates common building blocks consumed by the
execution-context services:

- config: Runtime configuration via pydantic-settings
- logging: Structured logging with user/context correlation
- metrics: Prometheus counters for cache behaviour
- errors: Canonical error types and responses
- circuit_breaker: Protection for calls to the role lookup endpoint
- test_helpers: Fakes and factories for the test suites
"""
