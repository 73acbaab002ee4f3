import logging
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from certissuer.metrics import IssuerMetrics
from main import app
from shared.logging import NOISY_LOGGERS, setup_logging
from shared.metrics import setup_metrics

client = TestClient(app)


def test_setup_logging():
    """Test that setup_logging configures OTel provider."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    try:
        with patch("shared.logging.set_logger_provider") as mock_set_provider, \
             patch("shared.logging.LoggerProvider") as mock_provider_cls, \
             patch("shared.logging.LoggingHandler", return_value=logging.NullHandler()), \
             patch("shared.logging.BatchLogRecordProcessor"), \
             patch("shared.logging.ConsoleLogRecordExporter"):

            setup_logging()

            mock_provider_cls.assert_called_once()
            mock_set_provider.assert_called_once()

        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING
    finally:
        root.handlers = handlers


def test_setup_metrics():
    """Test that setup_metrics configures OTel meter provider."""
    with patch("shared.metrics.MeterProvider") as mock_provider_cls, \
         patch("shared.metrics.metrics.set_meter_provider") as mock_set_provider, \
         patch("shared.metrics.PrometheusMetricReader"), \
         patch("shared.metrics.PeriodicExportingMetricReader"), \
         patch("shared.metrics.ConsoleMetricExporter"):

        provider = setup_metrics("test-app")

        mock_provider_cls.assert_called_once()
        mock_set_provider.assert_called_once_with(provider)


@pytest.mark.asyncio
async def test_get_db_context():
    """Test get_db_context yields a session from the session factory."""
    from shared.database import get_db_context

    with patch("shared.database.AsyncSessionLocal") as mock_maker:
        mock_session = MagicMock()
        mock_session.__aenter__.return_value = mock_session
        mock_session.__aexit__.return_value = None
        mock_maker.return_value = mock_session

        async with get_db_context() as session:
            assert session == mock_session


def test_health_check():
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_certificates_router_is_mounted():
    paths = {route.path for route in app.routes}

    assert "/apis/v1/certificates" in paths
    assert "/apis/v1/certificates/{name}" in paths


def test_issuer_metrics_facade():
    """Test the metrics facade labels rejected transitions."""
    with patch("certissuer.metrics.phase_transitions_total") as transitions, \
         patch("certissuer.metrics.requests_rejected_total") as rejected:
        IssuerMetrics().record_transition("Submitted", "Rejected", "ProcessedRejectedInvalidCSR")

    transitions.add.assert_called_once_with(
        1,
        {"from_phase": "Submitted", "to_phase": "Rejected", "reason": "ProcessedRejectedInvalidCSR"},
    )
    rejected.add.assert_called_once_with(1, {"reason": "ProcessedRejectedInvalidCSR"})
