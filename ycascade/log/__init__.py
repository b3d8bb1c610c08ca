"""日志模块

提供级联软删除库使用的日志工具：
- get_logger: 按模块名获取日志器
- setup_logger: 快速配置控制台/文件输出
- setup_logger_from_config: 根据 LoggingSettings 配置

使用示例:
    from ycascade.log import get_logger, setup_logger

    setup_logger("ycascade", level="DEBUG")
    logger = get_logger()
"""

from .logger import (
    setup_logger,
    setup_logger_from_config,
    create_formatter,
    MicrosecondFormatter,
    DEFAULT_LOG_FORMAT,
    logger,
    get_logger,
)

__all__ = [
    "setup_logger",
    "setup_logger_from_config",
    "create_formatter",
    "MicrosecondFormatter",
    "DEFAULT_LOG_FORMAT",
    "logger",
    "get_logger",
]
