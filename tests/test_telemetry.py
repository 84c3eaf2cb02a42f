"""Tests for observability backend selection."""

from __future__ import annotations

import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from fastapi import FastAPI

from support_assistant import __version__
from support_assistant.telemetry import (
    build_tracer_provider,
    is_observability_active,
    setup_telemetry,
)
from tests.factories import make_settings

_HEALTH = "/health,/api/chat/health,/api/kb/health"


class TestModeSelection:
    def test_off_is_a_no_op(self, tmp_path: Path):
        settings = make_settings(tmp_path, observability="off")
        app = FastAPI()
        assert setup_telemetry(app, settings) == "off"
        assert is_observability_active(settings) is False
        assert app.user_middleware == []

    def test_unknown_mode_stays_off(self, tmp_path: Path):
        settings = make_settings(tmp_path, observability="zipkin")
        assert setup_telemetry(FastAPI(), settings) == "off"
        assert is_observability_active(settings) is False

    @pytest.mark.parametrize("mode", ["logfire", "OTEL"])
    def test_known_modes_are_active(self, tmp_path: Path, mode: str):
        assert is_observability_active(make_settings(tmp_path, observability=mode)) is True


class TestLogfire:
    def test_configures_and_instruments(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        logfire = MagicMock()
        monkeypatch.setitem(sys.modules, "logfire", logfire)
        settings = make_settings(tmp_path, observability="logfire", otel_service_name="support-test")
        app = FastAPI()

        assert setup_telemetry(app, settings) == "logfire"

        logfire.configure.assert_called_once_with(
            service_name="support-test",
            service_version=__version__,
            send_to_logfire="if-token-present",
        )
        logfire.instrument_pydantic_ai.assert_called_once_with()
        logfire.instrument_fastapi.assert_called_once_with(app, excluded_urls=_HEALTH)


class TestOpenTelemetry:
    @pytest.fixture(autouse=True)
    def _requires_sdk(self):
        pytest.importorskip("opentelemetry.sdk")
        pytest.importorskip("opentelemetry.exporter.otlp.proto.http")

    def test_tracer_provider_resource(self, tmp_path: Path):
        settings = make_settings(tmp_path, otel_service_name="support-test")
        provider = build_tracer_provider(settings)
        try:
            attributes = provider.resource.attributes
            assert attributes["service.name"] == "support-test"
            assert attributes["service.version"] == __version__
        finally:
            provider.shutdown()

    def test_instruments_app_without_health_routes(self, tmp_path: Path):
        pytest.importorskip("opentelemetry.instrumentation.fastapi")
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        settings = make_settings(tmp_path, observability="otel")
        app = FastAPI()

        with (
            patch("opentelemetry.trace.set_tracer_provider") as set_provider,
            patch.object(FastAPIInstrumentor, "instrument_app") as instrument_app,
        ):
            assert setup_telemetry(app, settings) == "otel"

        instrument_app.assert_called_once_with(app, excluded_urls=_HEALTH)
        [provider] = set_provider.call_args[0]
        provider.shutdown()
