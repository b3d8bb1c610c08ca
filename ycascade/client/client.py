"""软删除客户端

应用代码的入口：按实体名提供委托，所有写操作经过级联执行器和审计，
所有读取默认只返回未删除记录。

使用示例:
    from sqlalchemy import create_engine
    from ycascade import SoftDeleteClient, build_schema, describe_models, CascadeSettings

    engine = create_engine("sqlite:///app.db")
    schema = build_schema(describe_models(Base), CascadeSettings(unique_strategy="mangle"))
    client = SoftDeleteClient(engine, schema, audit_context=lambda: {"request_id": current_request_id()})

    client.User.create({"id": "u1", "email": "a@x.com"})
    client.User.soft_delete({"id": "u1"}, actor="admin")
    client.User.only_deleted.find_many()

    with client.transaction() as tx:
        tx.Post.update({"id": "p1"}, {"title": "t"})
        tx.User.restore_cascade({"id": "u1"})
"""

from contextlib import contextmanager
from typing import Any, Callable, Dict, Generator, Mapping, Optional, Union

from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from ycascade.audit import AuditTrailWriter, merge_audit_context
from ycascade.cascade import CascadeExecutor
from ycascade.config import CascadeSettings
from ycascade.filtering import SoftDeleteRewriter
from ycascade.log import get_logger
from ycascade.schema import SchemaBuildResult, SchemaDescription, build_schema
from ycascade.transaction import TransactionContext, transaction_manager
from ycascade.unique import UniqueConflictResolver

from .delegates import EntityDelegate, ReadView, SoftDeleteDelegate

logger = get_logger("ycascade.client")

AuditContextProvider = Union[Callable[[], Optional[Mapping[str, Any]]], Mapping[str, Any], None]


class _ClientCore:
    """客户端内部状态，委托和事务视图共享"""

    def __init__(self, session_factory: sessionmaker, schema: SchemaBuildResult,
                 audit_context: AuditContextProvider = None, session: Optional[Session] = None):
        self.session_factory = session_factory
        self.schema = schema
        self.resolver = UniqueConflictResolver(schema.settings)
        self.rewriter = SoftDeleteRewriter(schema, self.resolver)
        self.writer = AuditTrailWriter(schema)
        self.executor = CascadeExecutor(schema, self.resolver, self.writer)
        self.audit_context_provider = audit_context
        self.session = session

    def bound(self, session: Session) -> "_ClientCore":
        """绑定到指定会话的副本（事务视图使用）"""
        core = object.__new__(_ClientCore)
        core.__dict__.update(self.__dict__)
        core.session = session
        return core

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        if self.session is not None:
            yield self.session
            return
        session = self.session_factory()
        try:
            yield session
        finally:
            session.close()

    def audit_context(self, call_context: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """合并全局上下文与单次调用的上下文（单次调用优先）"""
        provider = self.audit_context_provider
        global_context = provider() if callable(provider) else provider
        return merge_audit_context(global_context, call_context)


class _DelegateRegistry:
    """按实体名分发委托，分发表在构造时一次性生成"""

    def __init__(self, core: _ClientCore):
        self._core = core
        self._delegates: Dict[str, ReadView] = {}
        for member in core.schema.entity_names:
            entity = core.schema.entity(member)
            cls = SoftDeleteDelegate if entity.is_soft_deletable else EntityDelegate
            self._delegates[entity.name] = cls(core, entity)

    @property
    def schema(self) -> SchemaBuildResult:
        return self._core.schema

    @property
    def entity_names(self):
        return self._core.schema.entity_names

    def delegate(self, name) -> ReadView:
        """按实体名（或实体名枚举成员）获取委托

        Raises:
            KeyError: 未知实体，消息中列出可用实体
        """
        key = getattr(name, "value", name)
        try:
            return self._delegates[key]
        except KeyError:
            raise KeyError(
                f"未知实体 '{key}'，可用实体: {', '.join(sorted(self._delegates))}"
            ) from None

    def __getitem__(self, name) -> ReadView:
        return self.delegate(name)

    def __getattr__(self, name: str) -> ReadView:
        delegates = self.__dict__.get("_delegates")
        if delegates is None or name.startswith("_"):
            raise AttributeError(name)
        if name in delegates:
            return delegates[name]
        raise AttributeError(
            f"未知实体 '{name}'，可用实体: {', '.join(sorted(delegates))}"
        )

    def __contains__(self, name) -> bool:
        return getattr(name, "value", name) in self._delegates

    def __iter__(self):
        return iter(self._delegates)


class TransactionClient(_DelegateRegistry):
    """事务视图

    与 SoftDeleteClient 有相同的委托集合，所有操作绑定到同一个会话并加入同一个事务。
    """

    def __init__(self, core: _ClientCore, transaction: TransactionContext):
        super().__init__(core)
        self.tx = transaction

    @property
    def session(self) -> Session:
        return self._core.session


class SoftDeleteClient(_DelegateRegistry):
    """软删除客户端

    Args:
        bind: Engine 或 sessionmaker
        schema: SchemaBuildResult；传入 SchemaDescription 时按 settings 构建
        settings: 构建 schema 使用的配置（schema 已构建时忽略）
        audit_context: 全局审计上下文，字典或返回字典的函数（每次写操作调用一次）
    """

    def __init__(
        self,
        bind: Union[Engine, sessionmaker],
        schema: Union[SchemaBuildResult, SchemaDescription],
        settings: Optional[CascadeSettings] = None,
        audit_context: AuditContextProvider = None,
    ):
        if isinstance(schema, SchemaDescription):
            schema = build_schema(schema, settings)
        session_factory = bind if isinstance(bind, sessionmaker) else sessionmaker(bind=bind)
        super().__init__(_ClientCore(session_factory, schema, audit_context))
        logger.debug(f"客户端已创建: {len(self._delegates)} 个实体")

    @property
    def settings(self) -> CascadeSettings:
        return self._core.schema.settings

    @property
    def rewriter(self) -> SoftDeleteRewriter:
        return self._core.rewriter

    @property
    def executor(self) -> CascadeExecutor:
        return self._core.executor

    @contextmanager
    def transaction(self) -> Generator[TransactionClient, None, None]:
        """事务视图

        代码块正常结束时提交，抛出异常时整体回滚。

        使用示例:
            with client.transaction() as tx:
                tx.User.soft_delete({"id": "u1"}, actor="admin")
                tx.AuditEvent.count()
        """
        session = self._core.session_factory()
        try:
            with transaction_manager.transaction(session) as ctx:
                yield TransactionClient(self._core.bound(session), ctx)
        finally:
            session.close()

    @contextmanager
    def raw_session(self) -> Generator[Session, None, None]:
        """不经过读取过滤和审计的原始会话，由调用方自行提交"""
        session = self._core.session_factory()
        try:
            yield session
        finally:
            session.close()
