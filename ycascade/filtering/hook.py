"""软删除读取过滤钩子"""

from typing import Callable

from sqlalchemy import event
from sqlalchemy.orm import ORMExecuteState

from ycascade.log import get_logger

from .rewriter import SoftDeleteRewriter, mode_from_options

logger = get_logger("ycascade.filtering")


def install_read_filter(session_factory, rewriter: SoftDeleteRewriter) -> Callable:
    """注册读取过滤钩子

    注册 do_orm_execute 监听器，ORM 查询（包括关系懒加载）自动过滤已软删除的记录。

    Args:
        session_factory: sessionmaker、Session 子类或 Session 实例
        rewriter: 查询重写器

    Returns:
        监听函数，可传给 remove_read_filter 取消注册

    使用示例:
        from sqlalchemy.orm import sessionmaker
        from ycascade.filtering import SoftDeleteRewriter, install_read_filter

        SessionLocal = sessionmaker(bind=engine)
        install_read_filter(SessionLocal, SoftDeleteRewriter(schema))

        with SessionLocal() as session:
            session.scalars(select(User)).all()                                    # 未删除
            session.scalars(select(User).execution_options(include_deleted=True))  # 全部
            session.scalars(select(User).execution_options(only_deleted=True))     # 已删除
    """

    def _do_orm_execute(orm_execute_state: ORMExecuteState):
        if not orm_execute_state.is_select or orm_execute_state.is_column_load:
            return
        mode = mode_from_options(orm_execute_state.execution_options)
        orm_execute_state.statement = rewriter.rewrite_statement(
            orm_execute_state.statement, mode
        )

    event.listen(session_factory, "do_orm_execute", _do_orm_execute)
    logger.debug(f"已注册读取过滤钩子: {session_factory!r}")
    return _do_orm_execute


def remove_read_filter(session_factory, listener: Callable) -> None:
    """取消读取过滤钩子"""
    event.remove(session_factory, "do_orm_execute", listener)
