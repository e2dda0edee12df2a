from __future__ import annotations

import uuid
from contextvars import ContextVar

# 当前操作（一次 CLI 命令 / 一次 bootstrap）的 op_id，上下文默认值为 "-"
OP_ID: ContextVar[str] = ContextVar("op_id", default="-")


def new_op_id() -> str:
    """生成一个新的 op_id 并写入上下文，返回该值"""
    oid = uuid.uuid4().hex[:12]
    OP_ID.set(oid)
    return oid


def get_op_id() -> str:
    """获取当前上下文的 op_id，没有则返回默认值 '-'"""
    return OP_ID.get()
