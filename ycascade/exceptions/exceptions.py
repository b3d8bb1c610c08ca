"""级联软删除异常类定义

定义库使用的异常类体系。

注意：数据库唯一约束冲突（sqlalchemy.exc.IntegrityError）不在此体系中，
它会原样抛给调用方，不做包装也不重试。
"""

import copy
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class ErrorCode(str, Enum):
    """错误代码枚举

    继承自 str，可以直接作为字符串使用。

    使用示例:
        try:
            client.User.soft_delete({"id": "u1"})
        except YCascadeException as e:
            if e.code == ErrorCode.RECORD_NOT_FOUND:
                ...
    """

    # ==================== 通用错误 ====================
    OPERATION_FAILED = "OPERATION_FAILED"

    # ==================== 资源相关 ====================
    RECORD_NOT_FOUND = "RECORD_NOT_FOUND"

    # ==================== 并发相关 ====================
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"

    # ==================== 验证相关 ====================
    VALIDATION_ERROR = "VALIDATION_ERROR"
    VALUE_TOO_LONG = "VALUE_TOO_LONG"
    ACTOR_REQUIRED = "ACTOR_REQUIRED"
    INVALID_FILTER = "INVALID_FILTER"
    NOT_UNIQUE_WHERE = "NOT_UNIQUE_WHERE"

    # ==================== Schema 构建相关 ====================
    SCHEMA_INVALID = "SCHEMA_INVALID"
    CASCADE_CYCLE = "CASCADE_CYCLE"
    AUDIT_TABLE_INVALID = "AUDIT_TABLE_INVALID"
    UNIQUE_CONSTRAINT_UNPROTECTED = "UNIQUE_CONSTRAINT_UNPROTECTED"


# 类型别名，支持枚举和字符串
ErrorCodeType = Union[str, ErrorCode]


class YCascadeException(Exception):
    """异常基类

    属性:
        message: 错误消息
        code: 错误代码（支持 ErrorCode 枚举或字符串）
        details: 详细错误信息列表
        extra: 额外的上下文信息（如 entity、where）

    使用示例:
        raise YCascadeException(
            "级联操作失败",
            code=ErrorCode.OPERATION_FAILED,
            extra_key="value",
        )
    """

    def __init__(
        self,
        message: str,
        code: ErrorCodeType = ErrorCode.OPERATION_FAILED,
        details: Optional[List[str]] = None,
        **extra: Any
    ):
        self.message = message
        self.code = code
        self.details = details or []
        self.extra = extra
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式"""
        return {
            "message": self.message,
            "code": self.code,
            # 返回深拷贝，避免调用方修改返回值反向污染异常对象内部状态
            "details": copy.deepcopy(self.details),
            "extra": copy.deepcopy(self.extra),
        }

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r})"
        )


class ResourceNotFoundException(YCascadeException):
    """记录不存在异常

    单条软删除 / 硬删除 / 更新的目标记录不存在（或已被软删除）时抛出。
    抛出时事务尚未写入任何数据。

    使用示例:
        raise ResourceNotFoundException("记录不存在", entity="User", where={"id": "u1"})
    """

    def __init__(
        self,
        message: str = "记录不存在",
        code: ErrorCodeType = ErrorCode.RECORD_NOT_FOUND,
        details: Optional[List[str]] = None,
        **extra: Any
    ):
        super().__init__(message=message, code=code, details=details, **extra)


class ConcurrencyConflictException(YCascadeException):
    """并发冲突异常

    批量审计操作中，变更前后按主键配对失败（有记录被并发修改/删除/插入）时抛出，
    整个事务回滚，不会丢弃任何审计事件。
    """

    def __init__(
        self,
        message: str = "检测到并发修改",
        code: ErrorCodeType = ErrorCode.CONCURRENCY_CONFLICT,
        details: Optional[List[str]] = None,
        **extra: Any
    ):
        super().__init__(message=message, code=code, details=details, **extra)


class ValidationException(YCascadeException):
    """数据验证异常

    使用示例:
        # 改写后的唯一值超过字段长度
        raise ValidationException(
            "改写后的值超过字段最大长度",
            code=ErrorCode.VALUE_TOO_LONG,
            field="email",
        )
    """

    def __init__(
        self,
        message: str = "数据验证失败",
        code: ErrorCodeType = ErrorCode.VALIDATION_ERROR,
        details: Optional[List[str]] = None,
        **extra: Any
    ):
        super().__init__(message=message, code=code, details=details, **extra)


class SchemaBuildException(ValidationException):
    """Schema 构建异常

    在 build_schema 阶段发现的配置错误：级联环、审计表配置错误、
    严格模式下未处理的唯一约束问题等。
    """

    def __init__(
        self,
        message: str = "Schema 配置无效",
        code: ErrorCodeType = ErrorCode.SCHEMA_INVALID,
        details: Optional[List[str]] = None,
        **extra: Any
    ):
        super().__init__(message=message, code=code, details=details, **extra)


class Err:
    """异常快捷创建类

    使用示例:
        from ycascade import Err

        raise Err.not_found("记录不存在", entity="User")
        raise Err.conflict("变更前后记录无法配对", entity="User")
        raise Err.invalid("未知字段", code=ErrorCode.INVALID_FILTER)
        raise Err.schema("检测到级联环", code=ErrorCode.CASCADE_CYCLE)
    """

    @staticmethod
    def not_found(message: str = "记录不存在", **kwargs) -> ResourceNotFoundException:
        """记录不存在"""
        return ResourceNotFoundException(message, **kwargs)

    @staticmethod
    def conflict(message: str = "检测到并发修改", **kwargs) -> ConcurrencyConflictException:
        """并发冲突"""
        return ConcurrencyConflictException(message, **kwargs)

    @staticmethod
    def invalid(message: str = "数据验证失败", **kwargs) -> ValidationException:
        """数据验证失败"""
        return ValidationException(message, **kwargs)

    @staticmethod
    def schema(message: str = "Schema 配置无效", **kwargs) -> SchemaBuildException:
        """Schema 构建失败"""
        return SchemaBuildException(message, **kwargs)

    @staticmethod
    def fail(message: str = "操作失败", **kwargs) -> YCascadeException:
        """通用异常"""
        return YCascadeException(message, **kwargs)
