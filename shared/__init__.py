"""
Shared utilities for the access enforcer.

This package aggregates the ambient building blocks consumed by the
enforcement engine and by applications embedding it:

- config: Enforcer settings via pydantic-settings
- logging: Structured logging with correlation context
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- test_helpers: Test data factories and adapter/watcher doubles (tests only)

Only test_helpers imports from the enforcement package.
"""
