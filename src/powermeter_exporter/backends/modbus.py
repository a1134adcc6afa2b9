import asyncio
import logging
import re
import struct
from typing import TYPE_CHECKING, Any, Callable

from pymodbus.client import AsyncModbusSerialClient, AsyncModbusTcpClient
from pymodbus.exceptions import ModbusException

from powermeter_exporter.backends.base import (
    Backend,
    BusConnectionError,
    BusError,
    MetricSnapshot,
    Reading,
    RegisterReadError,
)
from powermeter_exporter.registers import RegisterSpec

if TYPE_CHECKING:
    from powermeter_exporter.metrics import MetricRegistry

logger = logging.getLogger(__name__)

DEFAULT_TCP_PORT = 502


def parse_conn(conn: str) -> tuple[str, str, int]:
    """Split a bus endpoint into ``(kind, target, port)``.

    ``host``, ``host:port`` and ``tcp://host:port`` select Modbus TCP; a
    device path such as ``/dev/ttyUSB0`` or ``COM3`` selects serial RTU, for
    which the port is 0.
    """
    conn = conn.strip()
    if not conn:
        raise ValueError("Bus endpoint is empty")
    if conn.startswith("/") or re.fullmatch(r"COM\d+", conn, re.IGNORECASE):
        return "serial", conn, 0

    if conn.startswith("tcp://"):
        conn = conn[len("tcp://") :]
    host, sep, port = conn.rpartition(":")
    if not sep:
        return "tcp", conn, DEFAULT_TCP_PORT
    if not host or not port.isdigit() or not 0 < int(port) < 65536:
        raise ValueError(f"Invalid bus endpoint: {conn!r}")
    return "tcp", host, int(port)


class ModbusSession:
    """One connection to the meter, reading holding registers as raw bytes."""

    def __init__(
        self,
        conn: str,
        *,
        device_id: int = 1,
        timeout: float = 5.0,
        baudrate: int = 9600,
    ) -> None:
        self._kind, self._target, self._port = parse_conn(conn)
        self._device_id = device_id
        self._timeout = timeout
        self._baudrate = baudrate
        self._client: Any = None

    @property
    def endpoint(self) -> str:
        if self._kind == "serial":
            return self._target
        return f"{self._target}:{self._port}"

    @property
    def connected(self) -> bool:
        return self._client is not None and self._client.connected

    def _create_client(self) -> Any:
        if self._kind == "serial":
            return AsyncModbusSerialClient(
                self._target, baudrate=self._baudrate, timeout=self._timeout, retries=0
            )
        return AsyncModbusTcpClient(
            self._target, port=self._port, timeout=self._timeout, retries=0
        )

    async def connect(self) -> None:
        if self._client is None:
            self._client = self._create_client()
        try:
            ok = await asyncio.wait_for(self._client.connect(), timeout=self._timeout)
        except (asyncio.TimeoutError, ModbusException, OSError) as exc:
            raise BusConnectionError(f"Cannot connect to {self.endpoint}: {exc}") from exc
        if not ok:
            raise BusConnectionError(f"Cannot connect to {self.endpoint}")
        logger.debug("Modbus connected: %s device=%d", self.endpoint, self._device_id)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    async def __aenter__(self) -> "ModbusSession":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    async def read_holding_registers(self, address: int, count: int) -> bytes:
        """Read ``count`` holding registers and return them big-endian packed."""
        if self._client is None:
            raise RegisterReadError(f"Not connected to {self.endpoint}")
        try:
            resp = await asyncio.wait_for(
                self._client.read_holding_registers(
                    address, count=count, device_id=self._device_id
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise RegisterReadError(f"Timeout after {self._timeout:.1f}s") from exc
        except (ModbusException, OSError) as exc:
            raise RegisterReadError(str(exc)) from exc

        if resp.isError():
            raise RegisterReadError(f"Exception response: {resp}")
        return struct.pack(f">{len(resp.registers)}H", *resp.registers)


def decode_raw(data: bytes, word_count: int) -> int:
    """Decode ``word_count`` big-endian 16-bit words into one unsigned integer."""
    expected = 2 * word_count
    if len(data) != expected:
        raise RegisterReadError(f"Expected {expected} bytes, got {len(data)}")
    return int.from_bytes(data, "big", signed=False)


async def read_register(session: Any, spec: RegisterSpec) -> Reading:
    """Read, decode and scale a single register."""
    try:
        data = await session.read_holding_registers(spec.address, spec.word_count)
        raw = decode_raw(data, spec.word_count)
    except (BusError, asyncio.TimeoutError, OSError) as exc:
        raise RegisterReadError(f"{spec.name} @0x{spec.address:04X}: {exc}") from exc
    return Reading(name=spec.name, raw=raw, value=raw * spec.scale)


async def poll(session: Any, register_map: dict[str, RegisterSpec]) -> MetricSnapshot:
    """Read every mapped register; the first failure aborts the whole poll."""
    readings = {}
    for name, spec in register_map.items():
        readings[name] = await read_register(session, spec)
    return MetricSnapshot(readings=readings)


async def poll_and_publish(
    session: Any,
    register_map: dict[str, RegisterSpec],
    registry: "MetricRegistry",
) -> MetricSnapshot | None:
    """Poll the meter and publish the result.

    A failed poll is logged and leaves every gauge untouched; ``None`` is
    returned in that case.
    """
    try:
        snapshot = await poll(session, register_map)
    except BusError as exc:
        logger.warning("Modbus read error: %s", exc)
        return None

    registry.publish(snapshot)
    logger.debug(
        "Modbus poll OK: %s",
        ", ".join(f"{name}={value:g}" for name, value in snapshot.values.items()),
    )
    return snapshot


MODES = ("on_demand", "interval")


class ModbusBackend(Backend):
    """Backend that reads the meter over Modbus and publishes into a registry.

    In ``on_demand`` mode every scrape opens its own session and polls before
    the response is rendered. In ``interval`` mode a long-lived session is
    polled in the background and scrapes only render the last values.
    """

    def __init__(
        self,
        config: dict,
        register_map: dict[str, RegisterSpec],
        registry: "MetricRegistry",
    ) -> None:
        self._conn: str = config["conn"]
        self._device_id: int = config.get("device_id", 1)
        self._timeout: float = config.get("timeout", 5.0)
        self._baudrate: int = config.get("baudrate", 9600)
        self._mode: str = config.get("mode", "on_demand")
        self._poll_interval: float = config.get("poll_interval", 10.0)
        if self._mode not in MODES:
            raise ValueError(f"Unknown mode: {self._mode!r}. Available: {', '.join(MODES)}")
        parse_conn(self._conn)

        self._register_map = register_map
        self._registry = registry
        self._lock = asyncio.Lock()
        self._session: ModbusSession | None = None
        self._poll_task: asyncio.Task | None = None
        self._session_factory: Callable[[], Any] = lambda: ModbusSession(
            self._conn,
            device_id=self._device_id,
            timeout=self._timeout,
            baudrate=self._baudrate,
        )

    @property
    def mode(self) -> str:
        return self._mode

    async def start(self) -> None:
        if self._mode == "interval":
            self._session = self._session_factory()
            try:
                await self._session.connect()
            except BusConnectionError:
                self._session.close()
                self._session = None
                raise
            self._poll_task = asyncio.create_task(self._poll_loop())
            logger.info(
                "Modbus backend started, polling %s every %.1fs", self._conn, self._poll_interval
            )
        else:
            logger.info("Modbus backend started, polling %s on each scrape", self._conn)

    async def stop(self) -> None:
        if self._poll_task is not None:
            task, self._poll_task = self._poll_task, None
            if not task.done():
                task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("Modbus poll task failed")
        if self._session is not None:
            self._session.close()
            self._session = None
        logger.info("Modbus backend stopped")

    async def collect(self) -> None:
        if self._mode != "on_demand":
            return

        async with self._lock:
            session = self._session_factory()
            try:
                await session.connect()
            except BusConnectionError:
                session.close()
                raise
            try:
                await poll_and_publish(session, self._register_map, self._registry)
            finally:
                session.close()

    async def _poll_loop(self) -> None:
        assert self._session is not None

        while True:
            try:
                async with self._lock:
                    if not self._session.connected:
                        logger.info("Reconnecting to %s", self._conn)
                        await self._session.connect()
                    await poll_and_publish(self._session, self._register_map, self._registry)
            except asyncio.CancelledError:
                raise
            except BusConnectionError as exc:
                logger.warning("Modbus connection error: %s", exc)
            except Exception:
                logger.exception("Modbus poll failed")

            await asyncio.sleep(self._poll_interval)
