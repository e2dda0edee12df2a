from .flavors import FLAVORS, StackFlavor, canonical_container_name, get_flavor
from .provider import Capabilities, Endpoint, StackProvider, StackReport, render_init_sql

__all__ = [
    "FLAVORS",
    "Capabilities",
    "Endpoint",
    "StackFlavor",
    "StackProvider",
    "StackReport",
    "canonical_container_name",
    "get_flavor",
    "render_init_sql",
]
