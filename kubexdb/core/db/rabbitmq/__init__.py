from .driver import RabbitMQDriver

__all__ = ["RabbitMQDriver"]
