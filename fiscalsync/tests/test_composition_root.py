"""Integration tests for configuration, the fiscal client and the composition root.

These tests verify that settings load and validate, that the client wires
adapters and core services together, and that run-mode helpers behave.
"""

import asyncio
import os
from decimal import Decimal
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from pydantic import ValidationError as SettingsValidationError

from fiscalsync.adapters.cli.commands import CLICommandHandler
from fiscalsync.adapters.notification.stdout import StdoutOutcomeObserver
from fiscalsync.adapters.store.sqlite import SQLiteOfflineStore
from fiscalsync.adapters.transport.http import HttpTransport
from fiscalsync.client import FiscalClient
from fiscalsync.config import Settings, load_settings
from fiscalsync.core.errors import ConnectivityError
from fiscalsync.core.models import Accepted, Deferred, VatRate
from fiscalsync.main import _execute_cli_command, configure_logging
from fiscalsync.tests.documents import gps_location, make_receipt
from fiscalsync.tests.fakes import (
    FakeOfflineStorePort,
    FakeOutcomeObserverPort,
    FakeTransportPort,
)


class TestConfigurationLoading:
    """Test configuration loading and validation."""

    def test_load_settings_with_defaults(self) -> None:
        settings = Settings(_env_file=None)  # type: ignore[call-arg]

        assert settings.run_mode == "daemon"
        assert settings.notification_backend == "stdout"
        assert settings.transport_timeout_seconds == 10.0
        assert settings.backoff_jitter_ratio == 0.2
        assert settings.log_level == "INFO"

    def test_load_settings_from_env(self) -> None:
        with patch.dict(
            os.environ,
            {
                "AUTHORITY_URL": "https://ekasa.example",
                "RESYNC_POLL_INTERVAL_SECONDS": "5",
                "RUN_MODE": "cli",
                "LOG_LEVEL": "DEBUG",
            },
        ):
            settings = load_settings()

        assert settings.authority_url == "https://ekasa.example"
        assert settings.resync_poll_interval_seconds == 5.0
        assert settings.run_mode == "cli"
        assert settings.log_level == "DEBUG"

    def test_load_settings_from_env_file(self, tmp_path: Path) -> None:
        env_file = tmp_path / "test.env"
        env_file.write_text("STORE_SQLITE_PATH=/var/lib/fiscal/offline.db\n")

        settings = load_settings(str(env_file))

        assert settings.store_sqlite_path == "/var/lib/fiscal/offline.db"

    @pytest.mark.parametrize(
        "env",
        [
            {"TRANSPORT_TIMEOUT_SECONDS": "0"},
            {"RESYNC_POLL_INTERVAL_SECONDS": "-1"},
            {"BACKOFF_JITTER_RATIO": "1"},
            {"BACKOFF_BASE_SECONDS": "10", "BACKOFF_MAX_SECONDS": "5"},
            {"VAT_STANDARD_PERCENT": "120"},
            {"RUN_MODE": "webhook"},
        ],
    )
    def test_invalid_settings_rejected(self, env: dict[str, str]) -> None:
        with patch.dict(os.environ, env):
            with pytest.raises(SettingsValidationError):
                load_settings()


class TestClientWiring:
    """Test that the client wires adapters from configuration."""

    @pytest.mark.asyncio
    async def test_from_settings(self, tmp_path: Path) -> None:
        settings = Settings(
            _env_file=None,  # type: ignore[call-arg]
            authority_url="https://ekasa.example/",
            store_sqlite_path=str(tmp_path / "offline.db"),
            vat_standard_percent=20,
            backoff_base_seconds=2,
            debug=True,
        )

        client = FiscalClient.from_settings(settings)
        try:
            assert isinstance(client.store, SQLiteOfflineStore)
            assert isinstance(client.transport, HttpTransport)
            assert client.transport.api_url == "https://ekasa.example"
            assert client.registration.codec.vat_table.percent(VatRate.STANDARD) == Decimal("20.0")
            assert client.scheduler.backoff.base_seconds == 2
            assert client.scheduler.registration is client.registration
            assert isinstance(client.scheduler.observers[0], StdoutOutcomeObserver)
            assert client.scheduler.observers[0].verbose
        finally:
            await client.transport.close()

    def test_no_observer_when_notifications_disabled(self, tmp_path: Path) -> None:
        settings = Settings(
            _env_file=None,  # type: ignore[call-arg]
            store_sqlite_path=str(tmp_path / "offline.db"),
            notification_backend="none",
        )

        client = FiscalClient.from_settings(settings)

        assert client.scheduler.observers == []


class TestFiscalClient:
    """Test the process-scoped client."""

    @pytest.mark.asyncio
    async def test_only_one_client_per_process(self) -> None:
        first = FiscalClient(FakeOfflineStorePort(), FakeTransportPort(), run_scheduler=False)
        second = FiscalClient(FakeOfflineStorePort(), FakeTransportPort(), run_scheduler=False)

        async with first:
            with pytest.raises(RuntimeError):
                async with second:
                    pass

        async with second:
            pass

    @pytest.mark.asyncio
    async def test_operations_require_open_client(self) -> None:
        client = FiscalClient(FakeOfflineStorePort(), FakeTransportPort())

        with pytest.raises(RuntimeError):
            await client.register_receipt(make_receipt())

    @pytest.mark.asyncio
    async def test_close_releases_adapters(self) -> None:
        store = FakeOfflineStorePort()
        transport = FakeTransportPort()

        async with FiscalClient(store, transport):
            pass

        assert store.closed
        assert transport.closed

    @pytest.mark.asyncio
    async def test_store_closed_when_transport_close_fails(self) -> None:
        store = FakeOfflineStorePort()
        transport = FakeTransportPort()
        transport.should_fail_close = True
        client = FiscalClient(store, transport, run_scheduler=False)

        with pytest.raises(RuntimeError, match="transport close"):
            async with client:
                pass

        assert store.closed
        assert FiscalClient._active is None

    @pytest.mark.asyncio
    async def test_adapters_closed_when_scheduler_stop_fails(self) -> None:
        store = FakeOfflineStorePort()
        transport = FakeTransportPort()
        client = FiscalClient(store, transport, run_scheduler=False)
        client.scheduler.stop = AsyncMock(side_effect=RuntimeError("stop failed"))

        with pytest.raises(RuntimeError, match="stop failed"):
            async with client:
                pass

        assert transport.closed
        assert store.closed
        assert FiscalClient._active is None

    @pytest.mark.asyncio
    async def test_deferred_receipt_is_reconciled_in_background(self) -> None:
        store = FakeOfflineStorePort()
        transport = FakeTransportPort()
        observer = FakeOutcomeObserverPort()
        transport.queue(ConnectivityError("offline"))

        async with FiscalClient(
            store, transport, observers=[observer], poll_interval_seconds=60.0
        ) as client:
            outcome = await client.register_receipt(make_receipt())
            assert isinstance(outcome, Deferred)

            for _ in range(300):
                if observer.notifications:
                    break
                await asyncio.sleep(0.01)

            assert observer.okps == [outcome.okp]
            assert (await client.stats()).total_pending == 0

    @pytest.mark.asyncio
    async def test_register_location_and_validate(self) -> None:
        async with FiscalClient(
            FakeOfflineStorePort(), FakeTransportPort(), run_scheduler=False
        ) as client:
            outcome = await client.register_location(gps_location())

            assert isinstance(outcome, Accepted)
            assert client.validate(make_receipt()).is_valid
            with pytest.raises(TypeError):
                await client.register_location(make_receipt())  # type: ignore[arg-type]


class TestRunModes:
    """Test composition root helpers."""

    def test_configure_logging(self) -> None:
        with patch("logging.basicConfig") as basic_config:
            configure_logging("DEBUG", "json")

        kwargs = basic_config.call_args.kwargs
        assert kwargs["level"] == 10
        assert kwargs["format"].startswith('{"time"')

    @pytest.mark.asyncio
    async def test_cli_dispatch(self) -> None:
        async with FiscalClient(
            FakeOfflineStorePort(), FakeTransportPort(), run_scheduler=False
        ) as client:
            handler = CLICommandHandler(client)

            status = await _execute_cli_command(handler, "status", {})
            assert status["status"] == "success"

            with pytest.raises(ValueError, match="file"):
                await _execute_cli_command(handler, "submit", {})
            with pytest.raises(ValueError, match="okp"):
                await _execute_cli_command(handler, "lookup", {})
            lookup = await _execute_cli_command(handler, "lookup", {"okp": "missing"})
            assert lookup["data"]["state"] == "unknown"
            with pytest.raises(ValueError, match="Unknown command"):
                await _execute_cli_command(handler, "mute", {})
