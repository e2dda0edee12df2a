from .driver import MongoDriver

__all__ = ["MongoDriver"]
