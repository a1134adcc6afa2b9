"""Holding register map of the power meter."""

from dataclasses import dataclass, replace
from typing import Any

# Cumulative energy is documented in two fixed-point variants. Both are kept
# so the deployment has to pick one explicitly.
ENERGY_SCALE_CENTI_KWH = 0.01
ENERGY_SCALE_MILLI_KWH = 0.001
DEFAULT_ENERGY_SCALE = ENERGY_SCALE_CENTI_KWH


@dataclass(frozen=True)
class RegisterSpec:
    """One physical quantity and how to read it from the bus."""

    name: str
    address: int
    word_count: int
    scale: float
    metric: str
    help: str

    def __post_init__(self) -> None:
        if not 0 <= self.address <= 0xFFFF:
            raise ValueError(f"{self.name}: address must fit in 16 bits, got {self.address!r}")
        if self.word_count not in (1, 2):
            raise ValueError(f"{self.name}: word_count must be 1 or 2, got {self.word_count!r}")
        if self.scale <= 0:
            raise ValueError(f"{self.name}: scale must be positive, got {self.scale!r}")


def _default_specs(energy_scale: float) -> list[RegisterSpec]:
    return [
        RegisterSpec("frequency", 0x0130, 1, 0.01, "frequency_hz", "frequency in Hz"),
        RegisterSpec("voltage_l1", 0x0131, 1, 0.01, "voltage_l1_v", "voltage L1 in Volt"),
        RegisterSpec("current_l1", 0x0139, 2, 0.001, "current_l1_a", "current L1 in Ampere"),
        RegisterSpec("active_power_l1", 0x0140, 2, 1.0, "power_active_w", "active power in W"),
        RegisterSpec(
            "reactive_power_l1", 0x0148, 2, 1.0, "power_reactive_var", "reactive power in VAr"
        ),
        RegisterSpec(
            "apparent_power_l1", 0x0150, 2, 1.0, "power_apparent_va", "apparent power in VA"
        ),
        RegisterSpec("power_factor_l1", 0x0158, 1, 0.001, "power_factor", "power factor"),
        RegisterSpec(
            "energy_total", 0xA000, 2, energy_scale, "energy_total_kwh", "total energy in kWh"
        ),
    ]


def build_register_map(
    overrides: dict[str, dict[str, Any]] | None = None,
    energy_scale: float = DEFAULT_ENERGY_SCALE,
) -> dict[str, RegisterSpec]:
    """Build the register map, in poll order.

    Args:
        overrides: Per-register replacements for ``scale``, ``metric`` or
            ``help``, keyed by register name. ``None`` values are ignored.
        energy_scale: Scale factor of the cumulative energy register.
    """
    register_map = {spec.name: spec for spec in _default_specs(energy_scale)}

    for name, fields in (overrides or {}).items():
        if name not in register_map:
            raise ValueError(
                f"Unknown register: {name!r}. Available: {', '.join(register_map)}"
            )
        unknown = set(fields) - {"scale", "metric", "help"}
        if unknown:
            raise ValueError(f"{name}: cannot override {', '.join(sorted(unknown))}")
        changes = {k: v for k, v in fields.items() if v is not None}
        register_map[name] = replace(register_map[name], **changes)

    return register_map


DEFAULT_REGISTER_MAP = build_register_map()
