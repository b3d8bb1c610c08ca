"""配置模块

提供配置管理功能：
- CascadeSettings: 级联软删除配置，支持 YAML + 环境变量
- LoggingSettings: 日志配置
- ConfigLoader: YAML 配置加载器

快速开始:
    from ycascade.config import CascadeSettings, load_yaml_config

    settings = load_yaml_config("config/cascade.yaml", CascadeSettings)

配置优先级: 显式参数 > 环境变量 > 默认值
"""

from .settings import (
    CascadeSettings,
    LoggingSettings,
    UniqueStrategy,
    DEFAULT_SENTINEL_VALUE,
)

from .loader import (
    ConfigLoader,
    load_yaml_config,
)

__all__ = [
    "CascadeSettings",
    "LoggingSettings",
    "UniqueStrategy",
    "DEFAULT_SENTINEL_VALUE",
    "ConfigLoader",
    "load_yaml_config",
]
