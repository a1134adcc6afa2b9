"""Prometheus gauges for the meter readings."""

import threading

from prometheus_client import CollectorRegistry, Gauge, generate_latest

from powermeter_exporter.backends.base import MetricSnapshot
from powermeter_exporter.registers import RegisterSpec


class MetricRegistry:
    """Owns one gauge per register on a private collector registry.

    ``publish`` and ``render`` hold the same lock, so a scrape always sees the
    values of exactly one poll.
    """

    def __init__(self, register_map: dict[str, RegisterSpec], prefix: str = "powermeter") -> None:
        self.registry = CollectorRegistry(auto_describe=True)
        self._lock = threading.Lock()
        self._names = {name: f"{prefix}_{spec.metric}" for name, spec in register_map.items()}
        self._gauges = {
            name: Gauge(self._names[name], spec.help, registry=self.registry)
            for name, spec in register_map.items()
        }
        self._last_poll = Gauge(
            f"{prefix}_last_poll_timestamp_seconds",
            "unix time of the last successful poll",
            registry=self.registry,
        )

    def publish(self, snapshot: MetricSnapshot) -> None:
        """Replace every gauge value with the readings of ``snapshot``."""
        missing = [name for name in self._gauges if name not in snapshot]
        if missing:
            raise ValueError(f"Snapshot is missing readings: {', '.join(missing)}")

        with self._lock:
            for name, gauge in self._gauges.items():
                gauge.set(snapshot[name].value)
            self._last_poll.set(snapshot.taken_at)

    def render(self) -> bytes:
        """Return the text exposition of all gauges."""
        with self._lock:
            return generate_latest(self.registry)

    def metric_name(self, name: str) -> str:
        """Return the exposed metric name of register ``name``."""
        return self._names[name]

    def value(self, name: str) -> float | None:
        """Return the published value of register ``name``."""
        return self.registry.get_sample_value(self._names[name])
