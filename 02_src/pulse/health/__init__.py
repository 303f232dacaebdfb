"""Health monitoring module."""

from .bottleneck import BottleneckDetector, assess
from .monitor import HealthMonitor, IHealthMonitor, compute_health_score

__all__ = [
    "BottleneckDetector",
    "HealthMonitor",
    "IHealthMonitor",
    "assess",
    "compute_health_score",
]
