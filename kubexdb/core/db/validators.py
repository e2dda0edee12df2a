from __future__ import annotations

from sqlalchemy.exc import ArgumentError

from ..config.models import DBConfigResolved
from ..errors import ValidationFailed
from .relational.driver import parse_dsn


def validate_postgres(cfg: DBConfigResolved) -> None:
    """PostgreSQL：host、user、db_name 在凭据注入之后必须可得（字段或连接串），端口必须合法"""
    try:
        url = parse_dsn(cfg)
    except ArgumentError as exc:
        raise ValidationFailed(cfg.id, f"无法解析的 dsn: {exc}") from exc

    present = {
        "host": cfg.host or (url.host if url else None),
        "user": cfg.user or (url.username if url else None),
        "db_name": cfg.db_name or (url.database if url else None),
    }
    missing = [field for field, value in present.items() if not value]
    if missing:
        raise ValidationFailed(cfg.id, f"缺少必填字段: {', '.join(missing)}")

    port = url.port if url and url.port else cfg.port
    if not 0 < port < 65536:
        raise ValidationFailed(cfg.id, f"无效的端口: {port}")


def validate_host_or_dsn(cfg: DBConfigResolved) -> None:
    """MongoDB / Redis / RabbitMQ：至少提供 host 或显式 DSN"""
    if not cfg.host and not cfg.dsn:
        raise ValidationFailed(cfg.id, "必须提供 host 或 dsn")
