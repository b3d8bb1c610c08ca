"""
配置模块
提供级联软删除库的默认配置，业务项目可以继承并覆盖
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


# 哨兵策略下"未删除"的固定时间常量
DEFAULT_SENTINEL_VALUE = datetime(9999, 12, 31, 0, 0, 0)


class UniqueStrategy(str, Enum):
    """唯一约束处理策略

    - MANGLE: 软删除时给唯一字符串字段追加 `__deleted_{pk}` 后缀，释放原值
    - SENTINEL: 删除字段非空，未删除行使用固定的远未来时间，唯一约束需包含删除字段
    - NONE: 不做任何值变换，只做约束分类和报告
    """
    MANGLE = "mangle"
    SENTINEL = "sentinel"
    NONE = "none"


class LoggingSettings(BaseSettings):
    """日志配置

    使用示例:
        from ycascade.config import LoggingSettings
        from ycascade.log import setup_logger_from_config

        log_config = LoggingSettings(level="DEBUG", file_path="logs/cascade.log")
        setup_logger_from_config(log_config)
    """
    level: str = Field(default="INFO", description="日志级别")
    file_path: str = Field(default="", description="日志文件路径，为空时不写文件")
    enable_console: bool = Field(default=True, description="是否启用控制台输出")
    propagate: bool = Field(default=True, description="是否传播到父日志器")

    class Config:
        env_prefix = "YCASCADE_LOG_"


class CascadeSettings(BaseSettings):
    """级联软删除配置

    对应的环境变量均以 YCASCADE_ 开头，例如 YCASCADE_UNIQUE_STRATEGY=sentinel。

    使用示例:
        from ycascade.config import CascadeSettings, UniqueStrategy

        settings = CascadeSettings(
            unique_strategy=UniqueStrategy.MANGLE,
            cascade_enabled=True,
            strict_validation=False,
        )

        # 字段名不符合约定时，显式指定
        settings = CascadeSettings(deleted_at_field="removed_at")

    配置说明:
        - unique_strategy: 唯一约束处理策略（mangle / sentinel / none）
        - cascade_enabled: 关闭后软删除只影响目标行，级联结果恒为 {}
        - strict_validation: 开启后，构建 schema 时发现的任何唯一约束问题都会抛出异常
        - deleted_at_field / deleted_by_field: 删除字段名覆盖，优先于 deleted_at / deletedAt 等约定名
        - sentinel_value: 哨兵策略下"未删除"的时间常量
    """
    unique_strategy: UniqueStrategy = Field(default=UniqueStrategy.MANGLE, description="唯一约束处理策略")
    cascade_enabled: bool = Field(default=True, description="是否启用级联软删除")
    strict_validation: bool = Field(default=False, description="是否将唯一约束问题升级为构建错误")
    deleted_at_field: Optional[str] = Field(default=None, description="删除时间字段名覆盖")
    deleted_by_field: Optional[str] = Field(default=None, description="删除人字段名覆盖")
    sentinel_value: datetime = Field(default=DEFAULT_SENTINEL_VALUE, description="哨兵策略下的未删除常量")

    @field_validator("unique_strategy", mode="before")
    @classmethod
    def _normalize_strategy(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    class Config:
        env_prefix = "YCASCADE_"
