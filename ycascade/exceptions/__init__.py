"""异常模块

使用示例:
    from ycascade.exceptions import Err, ErrorCode

    raise Err.not_found("记录不存在", entity="User")
"""

from .exceptions import (
    Err,
    ErrorCode,
    ErrorCodeType,
    YCascadeException,
    ResourceNotFoundException,
    ConcurrencyConflictException,
    ValidationException,
    SchemaBuildException,
)

__all__ = [
    "Err",
    "ErrorCode",
    "ErrorCodeType",
    "YCascadeException",
    "ResourceNotFoundException",
    "ConcurrencyConflictException",
    "ValidationException",
    "SchemaBuildException",
]
