"""
@description 日志配置
@responsibility 按配置的级别初始化 loguru 输出
"""

import sys

from loguru import logger

LOG_FORMAT = (
    "<green>[{time:YYYY-MM-DD HH:mm:ss}]</green> "
    "<level>[{level}]</level> {name}: <level>{message}</level>"
)


def setup_logging(level: str = "INFO") -> None:
    """替换 loguru 默认输出，只保留指定级别的 stderr 输出"""
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT, colorize=True)
