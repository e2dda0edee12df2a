from .health import HealthStatus, ResourceHealth
from .watcher import BackgroundWatcher

__all__ = ["HealthStatus", "ResourceHealth", "BackgroundWatcher"]
