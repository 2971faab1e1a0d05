"""Integration tests for the Runtime — wiring and log formatting with mocked I/O."""
from __future__ import annotations

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from vaultsync.config import AppConfig, RiskConfig, WalletConfig
from vaultsync.models import CollateralPosition, RiskAssessment
from vaultsync.services import Runtime


@pytest.fixture()
def runtime() -> Runtime:
    return Runtime(AppConfig(wallet=WalletConfig(chain=None)))


def _assessment(runtime: Runtime, collateral: float, borrowed: float, **kwargs) -> RiskAssessment:
    position = CollateralPosition(
        collateral_currency="cEUR",
        borrow_currency="cUSD",
        collateral_value=collateral,
        borrowed_value=borrowed,
        liquidation_threshold=80.0,
        updated_at=1_000.0,
        position_id="p1",
    )
    return runtime.engine.assess(position, now=kwargs.pop("now", 1_000.0))


class TestFormatAssessment:
    def test_critical(self, runtime: Runtime) -> None:
        text = runtime.format_assessment(_assessment(runtime, 700, 1000))
        assert "CRITICAL" in text
        assert "cEUR/cUSD" in text
        assert "700.00 cUSD" in text
        assert "HF: 70.0%" in text
        assert "Liquidation: 80%" in text

    def test_no_debt(self, runtime: Runtime) -> None:
        text = runtime.format_assessment(_assessment(runtime, 700, 0))
        assert "No debt" in text
        assert "HF: ∞" in text

    def test_stale(self, runtime: Runtime) -> None:
        text = runtime.format_assessment(_assessment(runtime, 1500, 1000, now=5_000.0))
        assert "(stale)" in text

    def test_unavailable(self, runtime: Runtime) -> None:
        text = runtime.format_assessment(
            RiskAssessment.unavailable("p9", "No rate from eXOF to cUSD")
        )
        assert text == "Position p9: risk unavailable (No rate from eXOF to cUSD)"


class TestLogAssessments:
    def test_high_risk_logged_as_warning(
        self, runtime: Runtime, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.INFO, logger="vaultsync.services.runtime"):
            runtime._log_assessments(
                (_assessment(runtime, 700, 1000), _assessment(runtime, 1500, 1000))
            )
        levels = [r.levelno for r in caplog.records]
        assert levels == [logging.WARNING, logging.INFO]

    def test_no_positions(self, runtime: Runtime, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO, logger="vaultsync.services.runtime"):
            runtime._log_assessments(())
        assert "No active positions" in caplog.text


class TestRun:
    @pytest.mark.asyncio
    async def test_run_wires_and_tears_down(self, runtime: Runtime) -> None:
        runtime.wallet = MagicMock()
        runtime.wallet.check_existing_session = AsyncMock(return_value=False)
        runtime.channel = MagicMock()
        runtime.channel.url = "ws://test.invalid"
        runtime.channel.wait_closed = AsyncMock(return_value=None)
        runtime.channel.close = AsyncMock(return_value=None)
        runtime.channel.last_error = None
        runtime.sync = MagicMock()
        runtime.sync.stop = AsyncMock(return_value=None)

        await runtime.run()

        runtime.sync.start.assert_called_once()
        runtime.wallet.check_existing_session.assert_awaited_once()
        runtime.channel.connect.assert_called_once()
        runtime.sync.stop.assert_awaited_once()
        runtime.wallet.disconnect.assert_called_once()
        runtime.channel.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_run_with_duration(self, runtime: Runtime) -> None:
        runtime.wallet = MagicMock()
        runtime.wallet.check_existing_session = AsyncMock(return_value=True)
        runtime.wallet.address = "0x" + "ab" * 20
        runtime.channel = MagicMock()
        runtime.channel.url = "ws://test.invalid"
        runtime.channel.close = AsyncMock(return_value=None)
        runtime.channel.last_error = None

        async def never_closes() -> None:
            await asyncio.Event().wait()

        runtime.channel.wait_closed = never_closes
        runtime.sync = MagicMock()
        runtime.sync.stop = AsyncMock(return_value=None)

        await runtime.run(duration_seconds=0.01)

        runtime.channel.close.assert_awaited_once()


def _mock_io(runtime: Runtime) -> None:
    runtime.wallet = MagicMock()
    runtime.wallet.check_existing_session = AsyncMock(return_value=False)
    runtime.channel = MagicMock()
    runtime.channel.close = AsyncMock(return_value=None)
    runtime.sync = MagicMock()
    runtime.sync.stop = AsyncMock(return_value=None)


class TestStalenessRefresh:
    @pytest.mark.asyncio
    async def test_refreshes_periodically_until_stopped(self, tick_sleep, settle_loop) -> None:
        runtime = Runtime(
            AppConfig(wallet=WalletConfig(chain=None), risk=RiskConfig(stale_after_seconds=120)),
            sleep=tick_sleep,
        )
        _mock_io(runtime)

        await runtime.start()
        await settle_loop()
        assert tick_sleep.delays == [12.0]
        runtime.sync.refresh_staleness.assert_not_called()

        tick_sleep.tick()
        await settle_loop()
        tick_sleep.tick()
        await settle_loop()
        assert runtime.sync.refresh_staleness.call_count == 2
        assert tick_sleep.delays == [12.0, 12.0, 12.0]

        await runtime.stop()
        tick_sleep.tick()
        await settle_loop()
        assert runtime.sync.refresh_staleness.call_count == 2

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_loop_alive(
        self, runtime: Runtime, tick_sleep, settle_loop, caplog: pytest.LogCaptureFixture
    ) -> None:
        runtime._sleep = tick_sleep
        _mock_io(runtime)
        runtime.sync.refresh_staleness.side_effect = [RuntimeError("boom"), ()]

        await runtime.start()
        await settle_loop()
        with caplog.at_level(logging.ERROR, logger="vaultsync.services.runtime"):
            tick_sleep.tick()
            await settle_loop()
        tick_sleep.tick()
        await settle_loop()

        assert runtime.sync.refresh_staleness.call_count == 2
        assert "Staleness refresh failed" in caplog.text
        await runtime.stop()


class TestCurrencyRegistry:
    def test_rates_for_unregistered_currencies_rejected(self, runtime: Runtime) -> None:
        assert runtime.rates.update_from_message({"from": "DOGE", "to": "cUSD", "rate": 0.1}) == 0
        assert runtime.rates.update_from_message({"from": "cEUR", "to": "cUSD", "rate": 1.1}) == 1

    def test_sync_uses_registry(self, runtime: Runtime) -> None:
        assert runtime.sync._registry is runtime.registry
