"""事务传播行为

定义当操作在已有事务上下文中被调用时的行为
"""

from enum import Enum


class TransactionPropagation(str, Enum):
    """事务传播行为

    使用示例:
        with tm.transaction(session) as tx:
            # 软删除内部同样以 REQUIRED 打开事务，这里会加入外层事务
            executor.soft_delete(session, "User", {"id": "u1"}, actor="admin")
    """

    REQUIRED = "required"
    """如果当前会话已有事务则加入，没有则新建（默认）

    级联软删除、恢复、审计写入全部使用该行为，
    保证一次顶层调用只对应一个数据库事务。
    """

    MANDATORY = "mandatory"
    """必须在事务中执行，否则抛出异常

    适用场景：
    - 只能被级联执行器内部调用的步骤（如审计事件写入）
    """

    NESTED = "nested"
    """在当前事务中创建嵌套事务（savepoint）

    外层回滚会一起回滚嵌套事务。
    """
