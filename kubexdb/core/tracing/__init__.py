from .context import OP_ID, get_op_id, new_op_id

__all__ = ["OP_ID", "get_op_id", "new_op_id"]
