from .driver import RedisDriver

__all__ = ["RedisDriver"]
