"""Tests for the register map."""

import pytest

from powermeter_exporter.registers import (
    DEFAULT_ENERGY_SCALE,
    DEFAULT_REGISTER_MAP,
    ENERGY_SCALE_CENTI_KWH,
    ENERGY_SCALE_MILLI_KWH,
    RegisterSpec,
    build_register_map,
)


def test_default_map_entries():
    expected = {
        "frequency": (0x0130, 1, 0.01),
        "voltage_l1": (0x0131, 1, 0.01),
        "current_l1": (0x0139, 2, 0.001),
        "active_power_l1": (0x0140, 2, 1.0),
        "reactive_power_l1": (0x0148, 2, 1.0),
        "apparent_power_l1": (0x0150, 2, 1.0),
        "power_factor_l1": (0x0158, 1, 0.001),
        "energy_total": (0xA000, 2, ENERGY_SCALE_CENTI_KWH),
    }
    assert list(DEFAULT_REGISTER_MAP) == list(expected)
    for name, (address, words, scale) in expected.items():
        spec = DEFAULT_REGISTER_MAP[name]
        assert spec.name == name
        assert spec.address == address
        assert spec.word_count == words
        assert spec.scale == scale


def test_energy_scale_constants():
    """Both documented energy resolutions stay visible as named constants."""
    assert ENERGY_SCALE_CENTI_KWH == 0.01
    assert ENERGY_SCALE_MILLI_KWH == 0.001
    assert DEFAULT_ENERGY_SCALE == ENERGY_SCALE_CENTI_KWH


def test_energy_scale_selectable():
    register_map = build_register_map(energy_scale=ENERGY_SCALE_MILLI_KWH)
    assert register_map["energy_total"].scale == 0.001
    # Other registers are untouched
    assert register_map["current_l1"].scale == 0.001
    assert register_map["frequency"].scale == 0.01


def test_metric_suffixes_are_unique():
    metrics = [spec.metric for spec in DEFAULT_REGISTER_MAP.values()]
    assert len(metrics) == len(set(metrics))
    assert DEFAULT_REGISTER_MAP["energy_total"].metric == "energy_total_kwh"


def test_overrides_replace_fields():
    register_map = build_register_map(
        {"active_power_l1": {"scale": 0.001, "metric": "power_active_kw", "help": None}}
    )
    spec = register_map["active_power_l1"]
    assert spec.scale == 0.001
    assert spec.metric == "power_active_kw"
    assert spec.help == "active power in W"
    assert spec.address == 0x0140
    # The module-level default is not mutated
    assert DEFAULT_REGISTER_MAP["active_power_l1"].scale == 1.0


def test_override_unknown_register():
    with pytest.raises(ValueError, match="Unknown register: 'voltage_l2'"):
        build_register_map({"voltage_l2": {"scale": 0.1}})


def test_override_address_rejected():
    with pytest.raises(ValueError, match="cannot override address"):
        build_register_map({"frequency": {"address": 0x0200}})


def test_register_spec_is_frozen():
    spec = DEFAULT_REGISTER_MAP["frequency"]
    with pytest.raises(AttributeError):
        spec.scale = 1.0


@pytest.mark.parametrize(
    "address, words, scale, message",
    [
        (0x10000, 1, 1.0, "address"),
        (-1, 1, 1.0, "address"),
        (0x0100, 3, 1.0, "word_count"),
        (0x0100, 1, 0.0, "scale"),
    ],
)
def test_register_spec_validation(address, words, scale, message):
    with pytest.raises(ValueError, match=message):
        RegisterSpec("test", address, words, scale, "test", "test")
