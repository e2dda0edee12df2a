from .adapter import ContainerEngineAdapter
from .models import ContainerInfo, PortBinding, ServiceSpec, VolumeBinding, VolumeInfo
from .ports import (
    check_port_conflicts,
    find_available_port,
    is_port_free,
    map_ports,
    resolve_host_ip,
)

__all__ = [
    "ContainerEngineAdapter",
    "ContainerInfo",
    "PortBinding",
    "ServiceSpec",
    "VolumeBinding",
    "VolumeInfo",
    "check_port_conflicts",
    "find_available_port",
    "is_port_free",
    "map_ports",
    "resolve_host_ip",
]
