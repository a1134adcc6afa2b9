"""FastAPI application for the power meter exporter."""

import argparse
import asyncio
import logging
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from powermeter_exporter.backends import create_backend
from powermeter_exporter.backends.base import BusError
from powermeter_exporter.backends.modbus import ModbusSession, poll
from powermeter_exporter.config import AppConfig, load_config
from powermeter_exporter.frontends import create_frontend
from powermeter_exporter.metrics import MetricRegistry
from powermeter_exporter.registers import RegisterSpec, build_register_map

logger = logging.getLogger("powermeter_exporter")


def register_map_from_config(config: AppConfig) -> dict[str, RegisterSpec]:
    overrides = {
        name: override.model_dump() for name, override in config.registers.overrides.items()
    }
    return build_register_map(overrides, energy_scale=config.registers.energy_scale)


def create_app(config: AppConfig) -> FastAPI:
    """Build the exporter app; backend and frontend are started by the lifespan."""
    register_map = register_map_from_config(config)
    registry = MetricRegistry(register_map, prefix=config.frontend.prometheus.prefix)

    backend = create_backend(
        config.backend.type, config.backend.modbus.model_dump(), register_map, registry
    )
    frontend = create_frontend(
        config.frontend.type, backend, registry, config.frontend.prometheus.model_dump()
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Energy register scale %g kWh per count", register_map["energy_total"].scale
        )
        logger.info("Starting backend (%s)...", config.backend.type)
        try:
            await backend.start()
        except BusError as exc:
            logger.critical("Modbus connection failed: %s", exc)
            raise
        await frontend.start()

        logger.info(
            "Exporter ready on %s:%d%s",
            config.server.host,
            config.server.port,
            config.frontend.prometheus.path,
        )

        yield

        # Shutdown
        await frontend.stop()
        await backend.stop()

    app = FastAPI(title="Power Meter Exporter", lifespan=lifespan)
    app.include_router(frontend.get_router())
    app.state.registry = registry
    return app


async def poll_once(config: AppConfig) -> bool:
    """Poll the meter a single time and log every reading."""
    register_map = register_map_from_config(config)
    modbus = config.backend.modbus
    try:
        async with ModbusSession(
            modbus.conn,
            device_id=modbus.device_id,
            timeout=modbus.timeout,
            baudrate=modbus.baudrate,
        ) as session:
            snapshot = await poll(session, register_map)
    except BusError as exc:
        logger.error("Poll failed: %s", exc)
        return False

    for name, reading in snapshot.readings.items():
        logger.info("%-18s raw=%-10d value=%g", name, reading.raw, reading.value)
    return True


def run() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Power Meter Exporter")
    parser.add_argument(
        "-c",
        "--config",
        default=None,
        help="Path to config YAML file (defaults apply and $POWERMETER_CONN is used without one)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Poll the meter once, log the readings and exit",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    try:
        config = load_config(args.config)
        app = create_app(config)
    except (OSError, ValueError) as exc:
        logger.critical("Invalid configuration: %s", exc)
        sys.exit(1)

    logging.getLogger().setLevel(config.server.log_level.upper())

    if args.once:
        sys.exit(0 if asyncio.run(poll_once(config)) else 1)

    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level=config.server.log_level,
    )
