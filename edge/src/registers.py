"""
Sungrow hybrid inverter Modbus TCP register map for energy readings.

Only the daily and cumulative energy counters are mapped; instantaneous
power registers are not needed to build production, consumption and
lifetime-total readings. All registers are input registers (function code
0x04) read through the WiNet-S dongle.

Registers are organised into contiguous groups so the poller can issue one
``read_input_registers`` call per group. Groups flagged ``optional`` may be
unsupported by some firmwares; the poller skips them instead of failing.

References:
    - Sungrow Hybrid Inverter Communication Protocol
    - https://github.com/mkaiser/Sungrow-SHx-Inverter-Modbus-Home-Assistant

CHANGELOG:
- 2026-10-14: Reduce to energy counters, add grid import group (STORY-004)
- 2026-02-14: Initial creation (STORY-002)

TODO:
- None
"""

from __future__ import annotations

from dataclasses import dataclass, field

_DEFAULT_WORD_COUNTS: dict[str, int] = {
    "U16": 1,
    "S16": 1,
    "U32": 2,
    "S32": 2,
}


@dataclass(frozen=True, slots=True)
class RegisterDef:
    """Definition of a single Modbus register.

    Attributes:
        address: Modbus input register start address.
        name: Unique identifier used as dict key.
        reg_type: ``"U16"``, ``"U32"``, ``"S16"`` or ``"S32"``. 32-bit
            types are high word first.
        unit: Engineering unit string.
        scale: Factor applied to the raw integer.
        valid_range: Optional ``(min, max)`` for the scaled value.
        description: Free-text description.
        word_count: 16-bit words occupied; derived from *reg_type*.
    """

    address: int
    name: str
    reg_type: str
    unit: str
    scale: float = 1.0
    valid_range: tuple[float, float] | None = None
    description: str = ""
    word_count: int = field(default=0, repr=False)

    def __post_init__(self) -> None:  # noqa: D105
        if self.word_count == 0:
            wc = _DEFAULT_WORD_COUNTS.get(self.reg_type)
            if wc is None:
                raise ValueError(
                    f"Register '{self.name}': unsupported type '{self.reg_type}'"
                )
            object.__setattr__(self, "word_count", wc)


@dataclass(frozen=True, slots=True)
class RegisterGroup:
    """A contiguous range of registers read in one call.

    Attributes:
        group_name: Group identifier (e.g. ``"pv"``).
        start_address: First register address in the batch.
        count: Number of 16-bit words to read.
        registers: Registers within this range.
        optional: Missing support is tolerated by the poller.
    """

    group_name: str
    start_address: int
    count: int
    registers: list[RegisterDef]
    optional: bool = False


PV_GROUP = RegisterGroup(
    group_name="pv",
    start_address=5011,
    count=8,  # 5011..5018
    registers=[
        RegisterDef(
            address=5011,
            name="daily_pv_generation",
            reg_type="U16",
            unit="kWh",
            scale=0.1,
            valid_range=(0, 200),
            description="PV energy generated today",
        ),
        RegisterDef(
            address=5017,
            name="total_pv_generation",
            reg_type="U32",
            unit="kWh",
            scale=0.1,
            valid_range=(0, 1_000_000),
            description="Cumulative PV energy generated",
        ),
    ],
)

LOAD_GROUP = RegisterGroup(
    group_name="load",
    start_address=13017,
    count=1,
    registers=[
        RegisterDef(
            address=13017,
            name="daily_direct_consumption",
            reg_type="U16",
            unit="kWh",
            scale=0.1,
            valid_range=(0, 200),
            description="PV energy consumed directly by the house today",
        ),
    ],
)

BATTERY_GROUP = RegisterGroup(
    group_name="battery",
    start_address=13026,
    count=1,
    registers=[
        RegisterDef(
            address=13026,
            name="daily_battery_discharge",
            reg_type="U16",
            unit="kWh",
            scale=0.1,
            valid_range=(0, 100),
            description="Battery energy discharged today",
        ),
    ],
    optional=True,
)

IMPORT_GROUP = RegisterGroup(
    group_name="import",
    start_address=13036,
    count=1,
    registers=[
        RegisterDef(
            address=13036,
            name="daily_import_energy",
            reg_type="U16",
            unit="kWh",
            scale=0.1,
            valid_range=(0, 200),
            description="Energy imported from the grid today",
        ),
    ],
)

ALL_GROUPS: list[RegisterGroup] = [PV_GROUP, LOAD_GROUP, BATTERY_GROUP, IMPORT_GROUP]
"""All register groups in read order."""

ALL_REGISTERS: dict[str, RegisterDef] = {
    reg.name: reg for group in ALL_GROUPS for reg in group.registers
}
"""Flat lookup of every register by name."""
