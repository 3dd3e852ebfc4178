"""
Control Service - Charging current control

Responsibilities:
- Evaluate charging policies against meter and station readings
- Apply the most restrictive current limit to the charging station
- Hold the previous limit when readings are unavailable

ControlService (process wiring and HTTP API) lives in .service and is
imported from there.
"""

from .loop import ControlLoop, arbitrate
from .policies import (
    CapacityTariffPolicy,
    ChargingPolicy,
    PricePolicy,
    QuarterHourCapacityTariffPolicy,
    WireCapacityPolicy,
    build_policies,
)
from .state import ChargingPolicyResult, IterationResult, LoopExitReason

__all__ = [
    "CapacityTariffPolicy",
    "ChargingPolicy",
    "ChargingPolicyResult",
    "ControlLoop",
    "IterationResult",
    "LoopExitReason",
    "PricePolicy",
    "QuarterHourCapacityTariffPolicy",
    "WireCapacityPolicy",
    "arbitrate",
    "build_policies",
]
