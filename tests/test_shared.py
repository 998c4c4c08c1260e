import logging
from unittest.mock import patch

import pytest
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import create_async_engine

from shared.config import Settings
from shared.database import init_db
from shared.logging import setup_logging
from shared.metrics import setup_metrics


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def test_setup_logging(restore_root_logger):
    """Test that setup_logging configures OTel provider."""
    with (
        patch("shared.logging.set_logger_provider") as mock_set_provider,
        patch("shared.logging.LoggerProvider") as mock_provider_cls,
        patch("shared.logging.BatchLogRecordProcessor"),
        patch("shared.logging.ConsoleLogRecordExporter"),
    ):
        setup_logging("debug")

    mock_provider_cls.assert_called_once()
    mock_set_provider.assert_called_once()
    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("aiosqlite").level == logging.WARNING


def test_setup_metrics():
    """Test that setup_metrics configures OTel meter provider."""
    with (
        patch("shared.metrics.MeterProvider") as mock_provider_cls,
        patch("shared.metrics.metrics.set_meter_provider") as mock_set_provider,
        patch("shared.metrics.PrometheusMetricReader"),
        patch("shared.metrics.PeriodicExportingMetricReader"),
        patch("shared.metrics.ConsoleMetricExporter"),
    ):
        provider = setup_metrics("test-app")

    mock_provider_cls.assert_called_once()
    mock_set_provider.assert_called_once_with(provider)
    assert len(mock_provider_cls.call_args.kwargs["metric_readers"]) == 2


@pytest.mark.asyncio
async def test_init_db_creates_tables(tmp_path):
    """Test that init_db creates the key pair, serial and CRL tables."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'pki.db'}")

    await init_db(bind=engine)

    async with engine.connect() as conn:
        tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
    await engine.dispose()

    assert {"key_pairs", "serial_allocations", "revocation_lists"} <= set(tables)


def test_leaf_san_ips_parsing():
    """Test the comma separated SAN IP setting."""
    settings = Settings(PKI_LEAF_SAN_IPS="10.0.0.1, ::1,")

    assert settings.leaf_san_ips == ["10.0.0.1", "::1"]
    assert Settings(PKI_LEAF_SAN_IPS="").leaf_san_ips == []


def test_settings_defaults():
    """Test defaults that shape issued certificates."""
    settings = Settings(_env_file=None)

    assert settings.PKI_CA_KEY_SIZE == 4096
    assert settings.PKI_LEAF_KEY_SIZE == 2048
    assert settings.PKI_BOOTSTRAP_AUTHORITY is True
