from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import time


class BusError(Exception):
    """Base class for field-bus failures."""


class BusConnectionError(BusError):
    """The bus session could not be established."""


class RegisterReadError(BusError):
    """A holding register read failed or returned a malformed response."""


@dataclass(frozen=True)
class Reading:
    """One decoded register value."""

    name: str
    raw: int  # Unsigned 16- or 32-bit wire value
    value: float  # raw * scale


@dataclass(frozen=True)
class MetricSnapshot:
    """All readings of one successful poll, keyed by register name."""

    readings: dict[str, Reading]
    taken_at: float = field(default_factory=time.time)

    def __getitem__(self, name: str) -> Reading:
        return self.readings[name]

    def __contains__(self, name: object) -> bool:
        return name in self.readings

    @property
    def values(self) -> dict[str, float]:
        return {name: reading.value for name, reading in self.readings.items()}


class Backend(ABC):
    """Abstract base class for meter data backends."""

    @abstractmethod
    async def start(self) -> None:
        """Start the backend (e.g., begin polling)."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop the backend and clean up resources."""

    @abstractmethod
    async def collect(self) -> None:
        """Bring the published metrics up to date before a scrape is served.

        Raises:
            BusConnectionError: the bus could not be reached for this scrape.
        """
