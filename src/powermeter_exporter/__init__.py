"""Modbus power meter to Prometheus exporter."""

__version__ = "0.1.0"
