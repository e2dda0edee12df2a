from .config import PostgresPoolConfig, parse_duration
from .driver import PostgresDriver

__all__ = ["PostgresDriver", "PostgresPoolConfig", "parse_duration"]
