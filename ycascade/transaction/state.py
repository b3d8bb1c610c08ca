"""事务状态枚举

定义事务的生命周期状态
"""

from enum import Enum


class TransactionState(str, Enum):
    """事务状态

    状态转换图:

        INACTIVE → ACTIVE → COMMITTED
                      ↓
                  ROLLED_BACK
                      ↓
                   FAILED

    级联操作中任何一步失败都会走 ROLLED_BACK，
    调用方不会观察到部分生效的级联结果。
    """

    INACTIVE = "inactive"
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"

    def is_terminal(self) -> bool:
        """判断是否为终态（不可再转换的状态）"""
        return self in (
            TransactionState.COMMITTED,
            TransactionState.ROLLED_BACK,
            TransactionState.FAILED
        )

    def can_commit(self) -> bool:
        """判断是否可以提交"""
        return self == TransactionState.ACTIVE

    def can_rollback(self) -> bool:
        """判断是否可以回滚"""
        return self in (TransactionState.ACTIVE, TransactionState.FAILED)
