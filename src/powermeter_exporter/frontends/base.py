"""Abstract base class for exporter frontends."""

from abc import ABC, abstractmethod

from fastapi import APIRouter

from powermeter_exporter.backends.base import Backend
from powermeter_exporter.metrics import MetricRegistry


class Frontend(ABC):
    """A frontend exposes the published metrics over a specific HTTP API."""

    def __init__(self, backend: Backend, registry: MetricRegistry, config: dict) -> None:
        self._backend = backend
        self._registry = registry

    @abstractmethod
    def get_router(self) -> APIRouter:
        """Return the APIRouter with this frontend's HTTP endpoints."""

    async def start(self) -> None:
        """Start frontend services."""

    async def stop(self) -> None:
        """Stop frontend services."""
