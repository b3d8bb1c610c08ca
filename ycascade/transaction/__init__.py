"""事务管理模块

使用示例:
    from ycascade.transaction import transaction_manager as tm

    with tm.transaction(session) as tx:
        ...
"""

from .state import TransactionState
from .propagation import TransactionPropagation
from .context import TransactionContext
from .manager import TransactionManager, transaction_manager, get_current_transaction
from .exceptions import (
    TransactionError,
    TransactionNotActiveError,
    TransactionAlreadyCommittedError,
    TransactionAlreadyRolledBackError,
    SavepointError,
    PropagationError,
)

__all__ = [
    "TransactionState",
    "TransactionPropagation",
    "TransactionContext",
    "TransactionManager",
    "transaction_manager",
    "get_current_transaction",
    "TransactionError",
    "TransactionNotActiveError",
    "TransactionAlreadyCommittedError",
    "TransactionAlreadyRolledBackError",
    "SavepointError",
    "PropagationError",
]
