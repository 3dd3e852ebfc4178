"""
Control State Dataclasses

Data structures for policy results and control loop iterations.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ...storage.local_db import ChargingControlParameters, ElectricityPrice
from ..device.models import ChargingStationData, MeterData


class LoopExitReason(str, Enum):
    """Why a loop returned instead of raising"""
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ChargingPolicyResult:
    """
    One policy's opinion on the charging current.

    current_limit_ampere is math.inf when the policy imposes no constraint.
    """
    current_limit_ampere: float
    message: str
    policy: str = ""

    @property
    def is_unconstrained(self) -> bool:
        return math.isinf(self.current_limit_ampere) and self.current_limit_ampere > 0


@dataclass
class IterationResult:
    """Complete record of one control loop iteration"""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    # Inputs
    parameters: ChargingControlParameters | None = None
    price: ElectricityPrice | None = None
    station_data: ChargingStationData | None = None
    meter_data: MeterData | None = None
    policy_results: list[ChargingPolicyResult] = field(default_factory=list)

    # Output
    binding_limit_ampere: float = 0.0
    setpoint_ampere: float = 0.0
    message: str = ""

    # Status
    fallback: bool = False
    shadow_mode: bool = False
    send_success: bool | None = None
    send_error: str | None = None
    execution_time_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging and the state endpoint"""
        return {
            "timestamp": self.timestamp.isoformat(),
            "parameters": self.parameters.to_dict() if self.parameters else None,
            "price": self.price.to_dict() if self.price else None,
            "station_data": self.station_data.to_dict() if self.station_data else None,
            "meter_data": self.meter_data.to_dict() if self.meter_data else None,
            "policy_results": [
                {
                    "policy": r.policy,
                    "current_limit_ampere": _json_float(r.current_limit_ampere),
                    "message": r.message,
                }
                for r in self.policy_results
            ],
            "binding_limit_ampere": _json_float(self.binding_limit_ampere),
            "setpoint_ampere": self.setpoint_ampere,
            "message": self.message,
            "fallback": self.fallback,
            "shadow_mode": self.shadow_mode,
            "send_success": self.send_success,
            "send_error": self.send_error,
            "execution_time_ms": round(self.execution_time_ms, 1),
        }


def _json_float(value: float) -> float | None:
    # JSON has no representation for inf/nan
    return value if math.isfinite(value) else None
