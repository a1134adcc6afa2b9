from powermeter_exporter.backends.base import Backend
from powermeter_exporter.backends.modbus import ModbusBackend

_BACKENDS: dict[str, type[Backend]] = {
    "modbus": ModbusBackend,
}


def create_backend(backend_type: str, config: dict, register_map: dict, registry) -> Backend:
    """Create a backend instance by type name."""
    cls = _BACKENDS.get(backend_type)
    if cls is None:
        raise ValueError(
            f"Unknown backend type: {backend_type!r}. Available: {', '.join(_BACKENDS)}"
        )
    return cls(config, register_map, registry)
