"""事务上下文

提供事务和保存点的上下文管理
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ycascade.log import get_logger

from .state import TransactionState
from .propagation import TransactionPropagation
from .exceptions import (
    TransactionNotActiveError,
    TransactionAlreadyCommittedError,
    TransactionAlreadyRolledBackError,
    SavepointError,
)

logger = get_logger("ycascade.transaction")


class TransactionContext:
    """事务上下文

    管理单个事务的完整生命周期，包括：
    - 事务状态跟踪
    - 嵌套层级（同一会话上的重复进入只加入、不提交）
    - Savepoint

    使用示例:
        with TransactionContext(session) as tx:
            session.execute(update(users).values(deleted_at=marker))

            with tx.savepoint():
                session.execute(insert(audit).values(...))
    """

    def __init__(
        self,
        session: Session,
        auto_commit: bool = True,
        propagation: TransactionPropagation = None,
    ):
        """初始化事务上下文

        Args:
            session: SQLAlchemy Session 对象
            auto_commit: 是否在上下文结束时自动提交
            propagation: 事务传播行为
        """
        self._session = session
        self._auto_commit = auto_commit
        self._propagation = propagation or TransactionPropagation.REQUIRED
        self._state = TransactionState.INACTIVE
        self._nesting_level = 0
        self._savepoint_counter = 0

        # 上下文数据（用于在同一事务的多个步骤之间传递数据）
        self.data: Dict[str, Any] = {}

    # ==================== 属性 ====================

    @property
    def session(self) -> Session:
        """获取数据库 session"""
        return self._session

    @property
    def state(self) -> TransactionState:
        """获取事务状态"""
        return self._state

    @property
    def is_active(self) -> bool:
        """事务是否活跃"""
        return self._state == TransactionState.ACTIVE

    @property
    def nesting_level(self) -> int:
        """获取嵌套层级"""
        return self._nesting_level

    @property
    def propagation(self) -> TransactionPropagation:
        """获取事务传播行为"""
        return self._propagation

    # ==================== 事务生命周期方法 ====================

    def begin(self) -> 'TransactionContext':
        """开始事务"""
        if self._state == TransactionState.ACTIVE:
            self._nesting_level += 1
            logger.debug(f"加入现有事务 (level={self._nesting_level})")
            return self

        # SQLAlchemy 2.x 默认 autobegin，第一次执行语句时真正开始
        self._state = TransactionState.ACTIVE
        self._nesting_level = 1
        logger.debug(f"事务开始 (level={self._nesting_level})")
        return self

    def commit(self) -> None:
        """提交事务"""
        if self._state == TransactionState.COMMITTED:
            raise TransactionAlreadyCommittedError()
        if self._state == TransactionState.ROLLED_BACK:
            raise TransactionAlreadyRolledBackError()
        if self._state != TransactionState.ACTIVE:
            raise TransactionNotActiveError(f"无法提交：事务状态为 {self._state}")

        if self._nesting_level > 1:
            # 嵌套事务，只减少层级
            self._nesting_level -= 1
            logger.debug(f"嵌套事务退出 (level={self._nesting_level})")
            return

        try:
            self._session.commit()
            self._state = TransactionState.COMMITTED
            self._nesting_level = 0
            logger.debug("事务提交成功")
        except Exception:
            self._state = TransactionState.FAILED
            raise

    def rollback(self) -> None:
        """回滚事务"""
        if self._state == TransactionState.COMMITTED:
            raise TransactionAlreadyCommittedError("无法回滚：事务已提交")
        if not self._state.can_rollback():
            return

        try:
            self._session.rollback()
            self._state = TransactionState.ROLLED_BACK
            self._nesting_level = 0
            logger.debug("事务回滚成功")
        except Exception as e:
            self._state = TransactionState.FAILED
            logger.error(f"事务回滚失败: {e}")
            raise

    def flush(self) -> None:
        """刷新 session（将变更写入数据库但不提交）"""
        if not self.is_active:
            raise TransactionNotActiveError("无法刷新：事务未激活")
        self._session.flush()

    # ==================== Savepoint 方法 ====================

    @contextmanager
    def savepoint(self, name: Optional[str] = None):
        """创建保存点上下文

        Args:
            name: 保存点名称，仅用于日志，不传则自动生成

        使用示例:
            with tx.savepoint("audit"):
                writer.write(...)
                # 如果这里抛出异常，只回滚到该保存点
        """
        if not self.is_active:
            raise TransactionNotActiveError("无法创建保存点：事务未激活")

        if name is None:
            self._savepoint_counter += 1
            name = f"sp_{self._savepoint_counter}"

        nested = self._session.begin_nested()
        logger.debug(f"创建保存点: {name}")
        try:
            yield nested
        except Exception:
            if nested.is_active:
                nested.rollback()
                logger.debug(f"保存点 {name} 已回滚")
            raise
        else:
            if not nested.is_active:
                raise SavepointError(f"保存点 '{name}' 已失效")
            nested.commit()
            logger.debug(f"保存点 {name} 已释放")

    # ==================== 上下文管理器 ====================

    def __enter__(self) -> 'TransactionContext':
        return self.begin()

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is not None:
            self.rollback()
            return False

        if self._auto_commit and self._nesting_level == 1:
            try:
                self.commit()
            except Exception:
                # commit 失败时确保回滚，清理 session 状态
                self.rollback()
                raise
        elif self._nesting_level > 1:
            self._nesting_level -= 1

        return False

    def __repr__(self) -> str:
        return (
            f"TransactionContext("
            f"state={self._state.value}, "
            f"nesting_level={self._nesting_level})"
        )
