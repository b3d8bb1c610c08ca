"""事务管理器

提供事务管理的统一入口
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Generator, Optional

from sqlalchemy.orm import Session

from ycascade.log import get_logger

from .propagation import TransactionPropagation
from .context import TransactionContext
from .exceptions import PropagationError

logger = get_logger("ycascade.transaction")

# 当前事务上下文（线程/协程安全）
_current_transaction: ContextVar[Optional[TransactionContext]] = ContextVar(
    '_current_transaction', default=None
)


def get_current_transaction() -> Optional[TransactionContext]:
    """获取当前事务上下文

    Returns:
        当前的事务上下文，如果不在事务中则返回 None
    """
    return _current_transaction.get()


class TransactionManager:
    """事务管理器

    级联执行器、审计写入、客户端的事务视图都通过它打开事务。
    传播行为只在同一个 Session 上生效：另一个会话上的活跃事务不会被加入。

    使用示例:
        from ycascade.transaction import transaction_manager as tm

        with tm.transaction(session) as tx:
            executor.soft_delete(session, "User", {"id": "u1"})
            executor.restore_cascade(session, "Post", {"id": "p9"})
        # 两个操作在同一个事务中提交
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def current_transaction(self) -> Optional[TransactionContext]:
        """获取当前事务上下文"""
        return _current_transaction.get()

    def _joinable(self, session: Session) -> Optional[TransactionContext]:
        current = self.current_transaction
        if current is not None and current.is_active and current.session is session:
            return current
        return None

    @contextmanager
    def transaction(
        self,
        session: Session,
        propagation: TransactionPropagation = TransactionPropagation.REQUIRED,
        auto_commit: bool = True,
    ) -> Generator[TransactionContext, None, None]:
        """创建事务上下文

        Args:
            session: 数据库会话
            propagation: 事务传播行为
            auto_commit: 是否自动提交

        Yields:
            TransactionContext 对象

        注意:
            加入外层事务后，内层抛出的异常会一直传到外层，由外层统一回滚；
            不要在内层捕获异常后继续使用同一个会话。
        """
        current = self._joinable(session)

        if propagation == TransactionPropagation.REQUIRED:
            if current is not None:
                current._nesting_level += 1
                logger.debug(f"REQUIRED: 加入现有事务 (level={current._nesting_level})")
                try:
                    yield current
                finally:
                    if current._nesting_level > 0:
                        current._nesting_level -= 1
                return

        elif propagation == TransactionPropagation.MANDATORY:
            if current is None:
                raise PropagationError("MANDATORY", "必须在事务中执行")
            current._nesting_level += 1
            try:
                yield current
            finally:
                if current._nesting_level > 0:
                    current._nesting_level -= 1
            return

        elif propagation == TransactionPropagation.NESTED:
            if current is None:
                raise PropagationError("NESTED", "NESTED 需要一个活跃的外层事务")
            logger.debug("NESTED: 创建嵌套事务 (savepoint)")
            with current.savepoint():
                yield current
            return

        ctx = TransactionContext(
            session=session,
            auto_commit=auto_commit,
            propagation=propagation,
        )

        token = _current_transaction.set(ctx)
        try:
            with ctx:
                yield ctx
        finally:
            _current_transaction.reset(token)

    def is_in_transaction(self, session: Optional[Session] = None) -> bool:
        """检查当前是否在事务中

        Args:
            session: 指定会话时，只有该会话上的事务才算
        """
        tx = self.current_transaction
        if tx is None or not tx.is_active:
            return False
        return session is None or tx.session is session


# 全局单例
transaction_manager = TransactionManager()
