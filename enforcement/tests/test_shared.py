"""
Unit tests for the shared configuration, error and metrics modules.
"""

import pytest
import structlog
from prometheus_client import CollectorRegistry

from shared.config import EnforcerSettings, get_settings
from shared.errors import AdapterError, EnforceError, ErrorResponse, EvalError
from shared.logging import (
    add_correlation_context,
    clear_context,
    configure_logging,
    get_logger,
    request_id_var,
    reset_subject_context,
    set_request_id,
    set_subject_context,
    subject_var,
)
from shared.metrics import MetricsCollector, get_metrics_collector


class TestSettings:
    """Test cases for EnforcerSettings."""

    def test_defaults(self, monkeypatch):
        """Test default switches."""
        for name in ("ENFORCER_CACHE_ENABLED", "ENFORCER_MAX_HIERARCHY_LEVEL"):
            monkeypatch.delenv(name, raising=False)

        settings = EnforcerSettings()

        assert settings.enabled is True
        assert settings.max_hierarchy_level == 10
        assert settings.cache_enabled is False
        assert settings.cache_max_size is None
        assert settings.auto_save is True
        assert settings.unique_policies is True

    def test_environment_override(self, monkeypatch):
        """Test ENFORCER_* variables override defaults."""
        monkeypatch.setenv("ENFORCER_CACHE_ENABLED", "true")
        monkeypatch.setenv("ENFORCER_MAX_HIERARCHY_LEVEL", "3")

        settings = get_settings()

        assert settings.cache_enabled is True
        assert settings.max_hierarchy_level == 3

    def test_explicit_override(self):
        """Test keyword overrides."""
        assert get_settings(cache_max_size=50).cache_max_size == 50

    def test_validation(self):
        """Test invalid values are rejected."""
        with pytest.raises(ValueError):
            EnforcerSettings(max_hierarchy_level=-1)


class TestErrors:
    """Test cases for the error hierarchy."""

    def test_to_response(self):
        """Test conversion to the error response model."""
        error = EnforceError("Request arity mismatch", {"expected": 3, "given": 2})
        response = error.to_response()

        assert isinstance(response, ErrorResponse)
        assert response.code == "ENFORCE_ERROR"
        assert response.details == {"expected": 3, "given": 2}

    def test_adapter_error_message(self):
        """Test adapter errors name the adapter."""
        error = AdapterError("MemoryAdapter", "connection refused")

        assert error.code == "ADAPTER_ERROR"
        assert error.message == "MemoryAdapter: connection refused"
        assert str(error) == "MemoryAdapter: connection refused"

    def test_default_details(self):
        """Test details default to an empty dict."""
        assert EvalError().details == {}


class TestMetrics:
    """Test cases for MetricsCollector."""

    @pytest.fixture
    def metrics(self):
        """Create collector on a private registry."""
        return MetricsCollector(registry=CollectorRegistry())

    def test_record_decision(self, metrics):
        """Test decision counters and duration."""
        metrics.record_decision(True, 0.001)
        metrics.record_decision(False, 0.002)
        metrics.record_decision(True, 0.001)

        registry = metrics.registry
        assert registry.get_sample_value("enforce_total", {"decision": "allow"}) == 2
        assert registry.get_sample_value("enforce_total", {"decision": "deny"}) == 1
        assert registry.get_sample_value("enforce_duration_seconds_count") == 3

    def test_record_cache_and_errors(self, metrics):
        """Test cache, rule error and mutation counters."""
        metrics.record_cache_lookup(True)
        metrics.record_cache_lookup(False)
        metrics.record_rule_error()
        metrics.record_mutation("add_policy")

        registry = metrics.registry
        assert registry.get_sample_value("decision_cache_total", {"result": "hit"}) == 1
        assert registry.get_sample_value("rule_eval_errors_total") == 1
        assert registry.get_sample_value("policy_mutations_total", {"operation": "add_policy"}) == 1

    def test_time_operation(self, metrics):
        """Test timing into a histogram."""
        with metrics.time_operation("enforce_duration_seconds"):
            pass

        assert metrics.registry.get_sample_value("enforce_duration_seconds_count") == 1

    def test_set_gauge(self, metrics):
        """Test labelled gauges."""
        metrics.set_gauge("policy_rows", 7, ptype="p")

        assert metrics.registry.get_sample_value("policy_rows", {"ptype": "p"}) == 7


class TestLogging:
    """Test cases for logging context helpers."""

    def test_request_id_context(self):
        """Test request ids are generated and cleared."""
        request_id = set_request_id()

        assert request_id_var.get() == request_id
        clear_context()
        assert request_id_var.get() is None

    def test_get_logger(self):
        """Test loggers accept keyword context."""
        logger = get_logger("enforcement.test")
        logger.info("Logger ready", component="test")

    def test_subject_context_is_restored(self):
        """Test a nested subject is reset to the outer one."""
        outer = set_subject_context("alice")
        try:
            inner = set_subject_context("bob")
            assert add_correlation_context(None, "info", {})["subject"] == "bob"
            reset_subject_context(inner)

            assert subject_var.get() == "alice"
        finally:
            reset_subject_context(outer)

        assert subject_var.get() is None
        assert "subject" not in add_correlation_context(None, "info", {})

    def test_configure_logging(self):
        """Test JSON logging configuration with correlation context."""
        configure_logging("enforcement", get_settings(log_level="debug").log_level)
        token = set_subject_context("alice")
        try:
            get_logger("enforcement.rbac").debug("Configured logger", hops=2)
        finally:
            reset_subject_context(token)
            structlog.reset_defaults()


class TestMetricsFactory:
    """Test cases for the collector factory."""

    def test_get_metrics_collector(self):
        """Test the factory names the component."""
        metrics = get_metrics_collector("edge", CollectorRegistry())

        assert metrics.component_name == "edge"
        assert metrics.get_metric("enforce_total") is not None
        assert metrics.registry.get_sample_value("enforcer_component_info", {"component": "edge", "version": "1.0.0"}) == 1
