"""
Device Reading Dataclasses

Immutable snapshots produced fresh each control iteration by the meter
and charging station clients.
"""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class MeterData:
    """
    Power (W), voltages (V) and currents (A) as reported by the main
    electricity meter.

    total_active_power does not include reactive load. Cumulative import is
    in kWh; the tariff split is only filled in by meters that report it.
    """
    total_active_power: float
    current1: float
    current2: float
    current3: float
    voltage1: float
    voltage2: float
    voltage3: float
    total_power_import_kwh: float = 0.0
    total_power_import_t1_kwh: float | None = None
    total_power_import_t2_kwh: float | None = None

    @property
    def currents(self) -> tuple[float, float, float]:
        return (self.current1, self.current2, self.current3)

    @property
    def voltage_sum(self) -> float:
        return self.voltage1 + self.voltage2 + self.voltage3

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_active_power_w": self.total_active_power,
            "current_a": list(self.currents),
            "voltage_v": [self.voltage1, self.voltage2, self.voltage3],
            "total_power_import_kwh": self.total_power_import_kwh,
            "total_power_import_t1_kwh": self.total_power_import_t1_kwh,
            "total_power_import_t2_kwh": self.total_power_import_t2_kwh,
        }

    def __str__(self) -> str:
        return (
            f"P={self.total_active_power:.0f}W "
            f"i1={self.current1:.2f} i2={self.current2:.2f} i3={self.current3:.2f} "
            f"v1={self.voltage1:.1f} v2={self.voltage2:.1f} v3={self.voltage3:.1f} "
            f"import={self.total_power_import_kwh:.3f}kWh"
        )


@dataclass(frozen=True)
class ChargingStationData:
    """Charging power (W) and per-phase currents (A) reported by the station"""
    real_power_sum: float
    current1: float
    current2: float
    current3: float
    current_limit_setpoint: float | None = None

    @property
    def currents(self) -> tuple[float, float, float]:
        return (self.current1, self.current2, self.current3)

    def to_dict(self) -> dict[str, Any]:
        return {
            "real_power_sum_w": self.real_power_sum,
            "current_a": list(self.currents),
            "current_limit_setpoint_a": self.current_limit_setpoint,
        }

    def __str__(self) -> str:
        setpoint = (
            f" setpoint={self.current_limit_setpoint:.2f}"
            if self.current_limit_setpoint is not None
            else ""
        )
        return (
            f"RealPowerSum={self.real_power_sum:.0f} "
            f"Current1={self.current1:.2f} Current2={self.current2:.2f} "
            f"Current3={self.current3:.2f}{setpoint}"
        )
