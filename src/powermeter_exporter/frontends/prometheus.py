"""Prometheus scrape frontend."""

import logging

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST

from powermeter_exporter.backends.base import Backend, BusConnectionError
from powermeter_exporter.frontends.base import Frontend
from powermeter_exporter.metrics import MetricRegistry

logger = logging.getLogger(__name__)


class PrometheusFrontend(Frontend):
    """Serves the metric registry in the Prometheus text format."""

    def __init__(self, backend: Backend, registry: MetricRegistry, config: dict) -> None:
        super().__init__(backend, registry, config)
        self._path: str = config.get("path", "/metrics")
        self._router = self._build_router()

    def get_router(self) -> APIRouter:
        return self._router

    def _build_router(self) -> APIRouter:
        router = APIRouter()
        backend = self._backend
        registry = self._registry

        @router.get(self._path)
        async def metrics():
            """Refresh from the meter if needed, then expose all gauges."""
            try:
                await backend.collect()
            except BusConnectionError as exc:
                logger.error("Modbus connection error: %s", exc)
                return Response(
                    "Modbus connection failed\n", status_code=500, media_type="text/plain"
                )
            return Response(registry.render(), media_type=CONTENT_TYPE_LATEST)

        return router
