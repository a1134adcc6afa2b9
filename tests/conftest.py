"""Shared test fixtures."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from powermeter_exporter.backends.base import Backend, BusConnectionError, RegisterReadError
from powermeter_exporter.frontends.prometheus import PrometheusFrontend
from powermeter_exporter.metrics import MetricRegistry
from powermeter_exporter.registers import DEFAULT_REGISTER_MAP

# Raw wire values keyed by register address, and the values they scale to
RAW_VALUES = {
    0x0130: 0x1396,  # frequency, 5014
    0x0131: 23050,  # voltage L1
    0x0139: 0x0000F424,  # current L1, 62500
    0x0140: 1500,  # active power
    0x0148: 0x00010000,  # reactive power, high word only
    0x0150: 1600,  # apparent power
    0x0158: 960,  # power factor
    0xA000: 1234567,  # energy
}

EXPECTED_VALUES = {
    "frequency": 50.14,
    "voltage_l1": 230.5,
    "current_l1": 62.5,
    "active_power_l1": 1500.0,
    "reactive_power_l1": 65536.0,
    "apparent_power_l1": 1600.0,
    "power_factor_l1": 0.96,
    "energy_total": 12345.67,
}


class FakeSession:
    """In-memory bus session serving fixed register values."""

    def __init__(self, values: dict[int, int] | None = None) -> None:
        self.values = dict(RAW_VALUES if values is None else values)
        self.fail = set()  # addresses whose read raises
        self.short = set()  # addresses answered with one byte too few
        self.refuse_connect = False
        self.connected = False
        self.closed = False
        self.reads: list[tuple[int, int]] = []

    async def connect(self) -> None:
        if self.refuse_connect:
            raise BusConnectionError("Cannot connect to fake:502")
        self.connected = True

    def close(self) -> None:
        self.connected = False
        self.closed = True

    async def __aenter__(self) -> "FakeSession":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    async def read_holding_registers(self, address: int, count: int) -> bytes:
        self.reads.append((address, count))
        if address in self.fail:
            raise RegisterReadError("Exception response: illegal data address")
        data = self.values[address].to_bytes(2 * count, "big")
        if address in self.short:
            return data[:-1]
        return data


class MockBackend(Backend):
    """A backend that counts scrapes and can simulate an unreachable meter."""

    def __init__(self) -> None:
        self.collect_calls = 0
        self.unreachable = False

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    async def collect(self) -> None:
        self.collect_calls += 1
        if self.unreachable:
            raise BusConnectionError("Cannot connect to fake:502")


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def register_map():
    return DEFAULT_REGISTER_MAP


@pytest.fixture
def registry(register_map):
    return MetricRegistry(register_map, prefix="powermeter")


@pytest.fixture
def mock_backend():
    return MockBackend()


@pytest.fixture
def client(mock_backend, registry):
    """FastAPI test client with a Prometheus frontend (no lifespan)."""
    frontend = PrometheusFrontend(mock_backend, registry, {"path": "/metrics"})
    test_app = FastAPI()
    test_app.include_router(frontend.get_router())
    with TestClient(test_app) as c:
        yield c
