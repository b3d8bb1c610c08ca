"""SQL 查询重写器 - 软删除过滤"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Iterable, Optional, TypeVar, Union

from sqlalchemy import Table
from sqlalchemy.orm import FromStatement
from sqlalchemy.sql import Alias, CompoundSelect, Executable, Join, Select, Subquery, TableClause
from sqlalchemy.sql.elements import TextClause

from ycascade.config import CascadeSettings
from ycascade.unique import UniqueConflictResolver

Statement = TypeVar('Statement', bound=Union[Select, FromStatement, CompoundSelect, Executable])


INCLUDE_DELETED_OPTION = "include_deleted"
ONLY_DELETED_OPTION = "only_deleted"


class FilterMode(str, Enum):
    """过滤模式"""
    ACTIVE = "active"
    """只返回未删除记录（默认）"""

    DELETED = "deleted"
    """只返回已删除记录（作用于主表，关联表不过滤）"""

    ALL = "all"
    """不过滤"""


def mode_from_options(options, default: FilterMode = FilterMode.ACTIVE) -> FilterMode:
    """根据 execution_options 判断过滤模式"""
    if options.get(INCLUDE_DELETED_OPTION):
        return FilterMode.ALL
    if options.get(ONLY_DELETED_OPTION):
        return FilterMode.DELETED
    return default


class SoftDeleteRewriter:
    """SQL 查询重写器

    自动为查询添加软删除过滤条件，实现：
    - SELECT 查询自动过滤已删除记录，条件以 AND 追加，不覆盖调用方条件
    - 支持子查询、JOIN、UNION 等复杂查询
    - 可通过 execution_options 切换模式

    删除字段与谓词来自 schema：mangle / none 策略为 IS NULL，sentinel 策略为 = 哨兵常量。
    没有 schema 时，退回按字段名匹配（任何带 deleted_field_name 列的表）。

    使用示例:
        from ycascade.filtering import SoftDeleteRewriter

        rewriter = SoftDeleteRewriter(schema)

        stmt = rewriter.rewrite_statement(select(users).where(users.c.name == "a"))

        # 包括已删除记录
        stmt = select(users).execution_options(include_deleted=True)
        # 只查已删除记录
        stmt = select(users).execution_options(only_deleted=True)
    """

    def __init__(
            self,
            schema=None,
            resolver: Optional[UniqueConflictResolver] = None,
            deleted_field_name: str = "deleted_at",
            ignored_tables: Iterable[str] = None,
    ):
        """初始化查询重写器

        Args:
            schema: SchemaBuildResult，提供每张表的删除字段
            resolver: 唯一约束解析器，提供未删除 / 已删除谓词
            deleted_field_name: 没有 schema 时使用的删除字段名
            ignored_tables: 不做过滤的表名
        """
        if resolver is None:
            settings = schema.settings if schema is not None else CascadeSettings()
            resolver = UniqueConflictResolver(settings)
        self.resolver = resolver
        self.deleted_field_name = deleted_field_name
        self.ignored_tables = set(ignored_tables or ())

        self._deleted_fields: Optional[Dict[str, str]] = None
        if schema is not None:
            self._deleted_fields = {
                entity.table_name: entity.deleted_at_field
                for entity in schema.entities.values()
                if entity.is_soft_deletable
            }

    # ==================== 谓词 ====================

    def deleted_column(self, table):
        """表（或别名）上的删除字段列，不可软删除时返回 None"""
        base = table.element if isinstance(table, Alias) else table
        name = getattr(base, "name", None)
        if name in self.ignored_tables:
            return None
        if self._deleted_fields is not None:
            field = self._deleted_fields.get(name)
        else:
            field = self.deleted_field_name
        if field is None:
            return None
        return table.columns.get(field)

    def predicate(self, table, mode: FilterMode = FilterMode.ACTIVE):
        """表在指定模式下的过滤条件，不需要过滤时返回 None"""
        if mode == FilterMode.ALL:
            return None
        column = self.deleted_column(table)
        if column is None:
            return None
        if mode == FilterMode.DELETED:
            return self.resolver.deleted_predicate(column)
        return self.resolver.active_predicate(column)

    # ==================== 语句重写 ====================

    def rewrite_statement(self, stmt: Statement, mode: Optional[FilterMode] = None) -> Statement:
        """重写 SQL 语句

        支持的语句类型：
        - Select
        - CompoundSelect（UNION 等）
        - FromStatement
        其余语句（INSERT / UPDATE / DELETE）原样返回，写操作由级联执行器负责。
        """
        if isinstance(stmt, Select):
            return self.rewrite_select(stmt, mode)

        if isinstance(stmt, CompoundSelect):
            return self.rewrite_compound_select(stmt, mode)

        if isinstance(stmt, FromStatement):
            if not isinstance(stmt.element, Select):
                return stmt
            stmt.element = self.rewrite_select(stmt.element, mode)
            return stmt

        return stmt

    def rewrite_select(self, stmt: Select, mode: Optional[FilterMode] = None) -> Select:
        """重写 SELECT 语句"""
        if mode is None:
            mode = mode_from_options(stmt.get_execution_options())
        if mode == FilterMode.ALL:
            return stmt

        state = {"primary_seen": False}
        for from_obj in stmt.get_final_froms():
            stmt = self._analyze_from(stmt, from_obj, mode, state)

        return stmt

    def rewrite_compound_select(self, stmt: CompoundSelect, mode: Optional[FilterMode] = None) -> CompoundSelect:
        """重写复合 SELECT 语句（UNION 等）"""
        for i in range(len(stmt.selects)):
            stmt.selects[i] = self.rewrite_select(stmt.selects[i], mode)
        return stmt

    def _rewrite_element(self, subquery: Subquery) -> Subquery:
        """重写子查询（子查询按自身的 execution_options 决定模式）"""
        if isinstance(subquery.element, CompoundSelect):
            subquery.element = self.rewrite_compound_select(subquery.element)
            return subquery

        if isinstance(subquery.element, Select):
            subquery.element = self.rewrite_select(subquery.element)
            return subquery

        raise NotImplementedError(f"不支持的子查询类型: {type(subquery.element)}")

    def _analyze_from(self, stmt: Select, from_obj, mode: FilterMode, state: dict) -> Select:
        """分析 FROM 子句"""
        if isinstance(from_obj, Table):
            return self._rewrite_from_table(stmt, from_obj, mode, state)

        if isinstance(from_obj, Join):
            # 递归处理多重 JOIN，左侧先于右侧
            stmt = self._analyze_from(stmt, from_obj.left, mode, state)
            return self._analyze_from(stmt, from_obj.right, mode, state)

        if isinstance(from_obj, Subquery):
            self._rewrite_element(from_obj)
            return stmt

        if isinstance(from_obj, Alias):
            if isinstance(from_obj.element, Table):
                return self._rewrite_from_table(stmt, from_obj, mode, state)
            if isinstance(from_obj.element, Subquery):
                self._rewrite_element(from_obj.element)
                return stmt
            raise NotImplementedError(f"不支持的 Alias 内部类型: {type(from_obj.element)}")

        if isinstance(from_obj, (TableClause, TextClause)):
            # 原始 SQL 文本，无法处理
            return stmt

        raise NotImplementedError(f"不支持的 FROM 类型: {type(from_obj)}")

    def _rewrite_from_table(self, stmt: Select, table, mode: FilterMode, state: dict) -> Select:
        """为表添加软删除过滤条件"""
        table_mode = mode
        if mode == FilterMode.DELETED:
            # 只有主表取已删除记录，关联表不过滤
            table_mode = FilterMode.ALL if state["primary_seen"] else FilterMode.DELETED
        state["primary_seen"] = True

        clause = self.predicate(table, table_mode)
        if clause is None:
            return stmt
        return stmt.filter(clause)
