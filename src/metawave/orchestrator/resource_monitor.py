"""System resource sampling for adaptive batch execution.

Uses psutil to read CPU, memory and battery state and derives how many
analyzer calls the orchestrator may run at once. Under pressure the
configured concurrency is lowered; it is never raised above the
configured value.

Pressure levels:
    critical: CPU > 80%, memory > 85%, or battery < 20% unplugged
              -> 1 concurrent call, batches of at most 5 notes
    elevated: CPU > 60%, memory > 70%, or battery < 50% unplugged
              -> at most 2 concurrent calls
    normal:   configured values
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import psutil

logger = logging.getLogger(__name__)


class PressureLevel(str, Enum):
    NORMAL = "normal"
    ELEVATED = "elevated"
    CRITICAL = "critical"


@dataclass
class ResourceSnapshot:
    """Point-in-time system resource reading.

    Attributes:
        cpu_percent: Overall CPU usage percentage
        memory_percent: Overall memory usage percentage
        battery_percent: Battery charge percentage, None without a battery
        power_plugged: Whether on external power, None without a battery
    """

    cpu_percent: float
    memory_percent: float
    battery_percent: Optional[float] = None
    power_plugged: Optional[bool] = None

    @property
    def on_battery(self) -> bool:
        return self.battery_percent is not None and self.power_plugged is False

    @property
    def pressure(self) -> PressureLevel:
        battery = self.battery_percent if self.on_battery else None
        if (
            self.cpu_percent > 80
            or self.memory_percent > 85
            or (battery is not None and battery < 20)
        ):
            return PressureLevel.CRITICAL
        if (
            self.cpu_percent > 60
            or self.memory_percent > 70
            or (battery is not None and battery < 50)
        ):
            return PressureLevel.ELEVATED
        return PressureLevel.NORMAL


@dataclass
class ExecutionLimits:
    batch_size: int
    max_concurrent_operations: int
    pressure: PressureLevel = PressureLevel.NORMAL


class ResourceMonitor:
    """Samples system resources and derives execution limits.

    Args:
        cpu_interval: Passed to ``psutil.cpu_percent``; None compares with
            the previous call and does not block
    """

    def __init__(self, cpu_interval: Optional[float] = None) -> None:
        self._cpu_interval = cpu_interval

    def sample(self) -> ResourceSnapshot:
        """Read current system resources, with safe defaults on failure."""
        try:
            cpu_percent = psutil.cpu_percent(interval=self._cpu_interval)
            memory = psutil.virtual_memory()
        except (OSError, RuntimeError) as exc:
            logger.warning(f"Failed to get system resources: {exc}")
            return ResourceSnapshot(cpu_percent=50.0, memory_percent=50.0)

        battery_percent = None
        power_plugged = None
        try:
            battery = psutil.sensors_battery()
        except (AttributeError, OSError, RuntimeError):
            # Not available on every platform
            battery = None
        if battery is not None:
            battery_percent = float(battery.percent)
            power_plugged = battery.power_plugged

        return ResourceSnapshot(
            cpu_percent=float(cpu_percent),
            memory_percent=float(memory.percent),
            battery_percent=battery_percent,
            power_plugged=power_plugged,
        )

    def limits_for(
        self,
        batch_size: int,
        max_concurrent_operations: int,
        snapshot: Optional[ResourceSnapshot] = None,
    ) -> ExecutionLimits:
        """Execution limits for the current (or given) resource state."""
        snapshot = snapshot or self.sample()
        pressure = snapshot.pressure

        if pressure == PressureLevel.CRITICAL:
            limits = ExecutionLimits(
                batch_size=min(batch_size, 5),
                max_concurrent_operations=1,
                pressure=pressure,
            )
        elif pressure == PressureLevel.ELEVATED:
            limits = ExecutionLimits(
                batch_size=batch_size,
                max_concurrent_operations=min(max_concurrent_operations, 2),
                pressure=pressure,
            )
        else:
            limits = ExecutionLimits(batch_size, max_concurrent_operations, pressure)

        if pressure != PressureLevel.NORMAL:
            logger.info(
                f"Reducing analysis concurrency to {limits.max_concurrent_operations} "
                f"(pressure: {pressure.value})",
                extra={
                    "cpu_percent": snapshot.cpu_percent,
                    "memory_percent": snapshot.memory_percent,
                    "battery_percent": snapshot.battery_percent,
                },
            )
        return limits
