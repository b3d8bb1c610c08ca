"""
日志工具模块
提供简化的日志配置功能
"""

import inspect
import logging
import os
import time
from typing import Any, Optional


class MicrosecondFormatter(logging.Formatter):
    """支持微秒精度的日志格式化器"""

    def formatTime(self, record, datefmt=None):
        ct = self.converter(record.created)
        if datefmt:
            s = time.strftime(datefmt, ct)
        else:
            s = time.strftime("%Y-%m-%d %H:%M:%S", ct)
        # 添加微秒部分（6位数）
        return "%s.%06d" % (s, (record.created - int(record.created)) * 1000000)


# 默认日志格式
DEFAULT_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(filename)s:%(lineno)d - %(message)s"


def create_formatter(
    log_format: str = None,
    datefmt: str = "%Y-%m-%d %H:%M:%S",
    use_microseconds: bool = True
) -> logging.Formatter:
    """创建日志格式化器

    Args:
        log_format: 日志格式字符串
        datefmt: 时间格式
        use_microseconds: 是否使用微秒精度

    Returns:
        日志格式化器
    """
    fmt = log_format or DEFAULT_LOG_FORMAT
    if use_microseconds:
        return MicrosecondFormatter(fmt=fmt, datefmt=datefmt)
    return logging.Formatter(fmt, datefmt=datefmt)


def setup_logger(
    name: str = None,
    level: str = "INFO",
    log_file: str = None,
    log_format: str = None,
    console: bool = True,
    use_microseconds: bool = True,
    propagate: bool = True,
) -> logging.Logger:
    """设置并返回配置好的日志记录器

    Args:
        name: 日志记录器名称，默认为root logger
        level: 日志级别，可选：DEBUG, INFO, WARNING, ERROR, CRITICAL
        log_file: 日志文件路径，如果不指定则不写入文件
        log_format: 日志格式，如果不指定则使用默认格式
        console: 是否输出到控制台
        use_microseconds: 是否使用微秒精度时间戳
        propagate: 是否传播到父日志器

    Returns:
        配置好的日志记录器

    使用示例:
        from ycascade.log import setup_logger

        # 打开级联执行过程的调试日志
        logger = setup_logger("ycascade.cascade", level="DEBUG")

        # 同时写入文件
        logger = setup_logger("ycascade", level="INFO", log_file="logs/cascade.log")
    """
    _logger = logging.getLogger(name) if name else logging.getLogger()
    _logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    _logger.propagate = propagate

    # 清除现有的处理器
    _logger.handlers.clear()

    formatter = create_formatter(log_format, use_microseconds=use_microseconds)

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        _logger.addHandler(console_handler)

    if log_file:
        # 确保日志目录存在
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir, exist_ok=True)

        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setFormatter(formatter)
        _logger.addHandler(file_handler)

    return _logger


def setup_logger_from_config(config: Any, name: str = "ycascade") -> logging.Logger:
    """根据 LoggingSettings 配置对象设置日志器

    Args:
        config: 日志配置对象，需要有 level / file_path / enable_console 属性
        name: 日志记录器名称

    Returns:
        配置好的日志记录器
    """
    return setup_logger(
        name=name,
        level=getattr(config, "level", "INFO"),
        log_file=getattr(config, "file_path", None) or None,
        console=getattr(config, "enable_console", True),
        propagate=getattr(config, "propagate", True),
    )


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """获取日志记录器，支持自动推断模块名

    无参数调用时，自动从调用栈获取模块的 __name__ 作为日志器名称。
    有参数调用时，若是不带点号的简写，自动添加 'ycascade.' 前缀。

    使用示例:
        from ycascade.log import get_logger

        logger = get_logger()             # 在 ycascade/cascade/executor.py 中 -> "ycascade.cascade.executor"
        logger = get_logger("audit")      # -> "ycascade.audit"
        logger = get_logger("sqlalchemy.engine")  # -> "sqlalchemy.engine"
    """
    if name is None:
        # 从调用栈自动推断模块名
        frame = inspect.currentframe()
        if frame is not None and frame.f_back is not None:
            name = frame.f_back.f_globals.get('__name__', 'ycascade')
        else:
            name = 'ycascade'
    elif not name.startswith('ycascade.') and name != 'ycascade' and '.' not in name:
        # 简写时自动添加 ycascade 前缀（如 "audit" -> "ycascade.audit"）
        name = f"ycascade.{name}"

    return logging.getLogger(name)


# 通用日志记录器
logger = logging.getLogger("ycascade")
