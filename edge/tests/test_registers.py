"""
Tests for the Sungrow energy-counter register map.

Verifies register map integrity, consistency, and grouping for batched reads.

CHANGELOG:
- 2026-10-16: Reduce to energy counters and the grid import group (STORY-004)
- 2026-02-14: Initial creation -- TDD tests written first (STORY-002)

TODO:
- None
"""

from __future__ import annotations

import pytest
from edge.src.registers import (
    ALL_GROUPS,
    ALL_REGISTERS,
    BATTERY_GROUP,
    RegisterDef,
)

REQUIRED_REGISTER_NAMES = {
    "daily_pv_generation",
    "total_pv_generation",
    "daily_direct_consumption",
    "daily_battery_discharge",
    "daily_import_energy",
}


class TestRegisterMap:
    """Every register the normalizer needs is mapped."""

    def test_required_registers_present(self) -> None:
        assert REQUIRED_REGISTER_NAMES <= set(ALL_REGISTERS)

    def test_energy_counters_are_kwh_tenths(self) -> None:
        for reg in ALL_REGISTERS.values():
            assert reg.unit == "kWh"
            assert reg.scale == 0.1

    def test_lifetime_total_is_u32(self) -> None:
        reg = ALL_REGISTERS["total_pv_generation"]
        assert reg.reg_type == "U32"
        assert reg.word_count == 2

    def test_valid_range_min_less_than_max(self) -> None:
        for reg in ALL_REGISTERS.values():
            if reg.valid_range is not None:
                lo, hi = reg.valid_range
                assert lo < hi, reg.name

    def test_no_duplicate_addresses(self) -> None:
        addresses = [reg.address for g in ALL_GROUPS for reg in g.registers]
        assert len(addresses) == len(set(addresses))


class TestRegisterGroups:
    """Groups cover their registers with contiguous reads."""

    def test_group_registers_within_range(self) -> None:
        for group in ALL_GROUPS:
            end = group.start_address + group.count
            for reg in group.registers:
                assert group.start_address <= reg.address
                assert reg.address + reg.word_count <= end, reg.name

    def test_only_battery_group_is_optional(self) -> None:
        optional = [g.group_name for g in ALL_GROUPS if g.optional]
        assert optional == [BATTERY_GROUP.group_name]

    def test_all_registers_flattens_groups(self) -> None:
        total = sum(len(g.registers) for g in ALL_GROUPS)
        assert len(ALL_REGISTERS) == total


class TestRegisterDef:
    def test_word_count_derived_from_type(self) -> None:
        reg = RegisterDef(address=1, name="x", reg_type="S32", unit="W")
        assert reg.word_count == 2

    def test_unsupported_type_rejected(self) -> None:
        with pytest.raises(ValueError, match="unsupported type"):
            RegisterDef(address=1, name="x", reg_type="F32", unit="W")
