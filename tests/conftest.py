"""Shared test fixtures, fakes and sample data."""
from __future__ import annotations

import asyncio
import json
import textwrap
from pathlib import Path
from typing import Any

import pytest
from eth_utils import to_checksum_address

from vaultsync.config import ChannelConfig, FeedsConfig, RiskConfig, WalletConfig
from vaultsync.errors import TransportError
from vaultsync.models import CurrencyPair, ExchangeRate
from vaultsync.risk.rates import RateConversionTable

ADDRESS_A = to_checksum_address("0x" + "a1" * 20)
ADDRESS_B = to_checksum_address("0x" + "b2" * 20)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeWalletProvider:
    """Scriptable EIP-1193 provider.

    ``accounts`` answers both account methods; a method can be made to fail
    by putting an exception in ``errors``.
    """

    def __init__(self, accounts: list[str] | None = None, chain_id: str = "0xaef3") -> None:
        self.accounts = list(accounts or [])
        self.chain_id = chain_id
        self.errors: dict[str, Exception] = {}
        self.calls: list[tuple[str, Any]] = []

    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        self.calls.append((method, params))
        if method in self.errors:
            raise self.errors[method]
        if method in ("eth_accounts", "eth_requestAccounts"):
            return list(self.accounts)
        if method == "eth_chainId":
            return self.chain_id
        return None

    def methods(self) -> list[str]:
        return [m for m, _ in self.calls]


class FakeTransport:
    """In-memory socket: frames are queued by the test, ``None`` closes."""

    def __init__(self, fail_open: bool = False) -> None:
        self.fail_open = fail_open
        self.frames: asyncio.Queue[str | None] = asyncio.Queue()
        self.sent: list[str] = []
        self.opened = False
        self.closed = False

    async def open(self) -> None:
        if self.fail_open:
            raise TransportError("connection refused")
        self.opened = True

    async def receive(self) -> str | None:
        return await self.frames.get()

    async def send(self, text: str) -> None:
        self.sent.append(text)

    async def close(self) -> None:
        self.closed = True

    def push(self, message_type: str, data: Any, timestamp: str = "2024-01-01T00:00:00Z") -> None:
        self.frames.put_nowait(
            json.dumps({"type": message_type, "data": data, "timestamp": timestamp})
        )

    def push_raw(self, raw: str) -> None:
        self.frames.put_nowait(raw)

    def drop(self) -> None:
        self.frames.put_nowait(None)


class TransportFactory:
    """Hands out transports in order and records every one it built."""

    def __init__(self, *transports: FakeTransport) -> None:
        self._queue = list(transports)
        self.built: list[FakeTransport] = []

    def __call__(self, url: str) -> FakeTransport:
        transport = self._queue.pop(0) if self._queue else FakeTransport(fail_open=True)
        self.built.append(transport)
        return transport


class FakeSleep:
    """Records requested delays and yields once instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


class TickSleep:
    """Sleep that only returns when the test calls ``tick()``."""

    def __init__(self) -> None:
        self.delays: list[float] = []
        self._ticks: asyncio.Queue[None] = asyncio.Queue()

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await self._ticks.get()

    def tick(self) -> None:
        self._ticks.put_nowait(None)


async def settle(rounds: int = 20) -> None:
    """Let pending tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def channel_config() -> ChannelConfig:
    return ChannelConfig(
        url="ws://test.invalid:3002", reconnect_interval_ms=5000, max_reconnect_attempts=5
    )


@pytest.fixture()
def wallet_config() -> WalletConfig:
    return WalletConfig(
        rpc_endpoints=("http://wallet1.example.com", "http://wallet2.example.com"),
        rpc_timeout=5,
        poll_interval_seconds=1.0,
        chain=None,
    )


@pytest.fixture()
def risk_config() -> RiskConfig:
    return RiskConfig(base_currency="cUSD", stale_after_seconds=300.0)


@pytest.fixture()
def feeds_config() -> FeedsConfig:
    return FeedsConfig(transactions_capacity=10, notifications_capacity=5)


@pytest.fixture()
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture()
def tick_sleep() -> TickSleep:
    return TickSleep()


# ---------------------------------------------------------------------------
# Model fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_rates() -> tuple[ExchangeRate, ...]:
    return (
        ExchangeRate("cEUR", "cUSD", 1.08, change_24h=0.4, last_updated=1_700_000_000_000, source="Mento"),
        ExchangeRate("cREAL", "cUSD", 0.20, change_24h=-1.2, last_updated=1_700_000_000_000, source="Mento"),
        ExchangeRate("cUSD", "eXOF", 600.0, last_updated=1_700_000_000_000, source="Oracle"),
    )


@pytest.fixture()
def rate_table(sample_rates: tuple[ExchangeRate, ...]) -> RateConversionTable:
    return RateConversionTable(sample_rates)


@pytest.fixture()
def sample_pairs() -> tuple[CurrencyPair, ...]:
    return (
        CurrencyPair("cEUR", "cUSD", apr=8.5, max_ltv=75, liquidation_threshold=80, liquidity=50000, utilization=45),
        CurrencyPair("cREAL", "cUSD", apr=9.2, max_ltv=70, liquidation_threshold=78, liquidity=20000, utilization=38),
    )


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    channel:
      url: "ws://localhost:4000"
      reconnect_interval_ms: 2000
      max_reconnect_attempts: 3
    wallet:
      rpc_endpoints: ["http://127.0.0.1:1248"]
      rpc_timeout: 10
      poll_interval_seconds: 0.5
      chain:
        chain_id: 42220
        chain_name: Celo Mainnet
    risk:
      base_currency: cUSD
      pivot_currency: cUSD
      stale_after_seconds: 120
      tiers: {critical: 1.1, high: 1.3, medium: 1.5}
    feeds:
      transactions_capacity: 20
      notifications_capacity: 3
    currencies:
      cUSD: {name: Celo Dollar, glyph: "$", decimals: 18, address: "0x874069Fa1Eb16D44d622F2e0Ca25eeA172369bC1"}
      cEUR: {name: Celo Euro, decimals: 18}
    pairs:
      - {collateral: cEUR, borrow: cUSD, apr: 8.5, max_ltv: 75, liquidation_threshold: 80}
    rates:
      - {from: cEUR, to: cUSD, rate: 1.08, source: Mento}
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file


# ---------------------------------------------------------------------------
# Fake fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def address_a() -> str:
    return ADDRESS_A


@pytest.fixture()
def address_b() -> str:
    return ADDRESS_B


@pytest.fixture()
def fake_provider() -> FakeWalletProvider:
    return FakeWalletProvider(accounts=[ADDRESS_A.lower()])


@pytest.fixture()
def transport_cls() -> type[FakeTransport]:
    return FakeTransport


@pytest.fixture()
def factory_cls() -> type[TransportFactory]:
    return TransportFactory


@pytest.fixture()
def settle_loop():
    return settle
