"""日志系统模块"""

import copy
import logging
import sys
from pathlib import Path
from typing import Optional


APP_LOGGER_NAME = "file_server"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ColoredFormatter(logging.Formatter):
    """带颜色的日志格式化器"""

    COLORS = {
        'DEBUG': '\033[36m',     # 青色
        'INFO': '\033[32m',      # 绿色
        'WARNING': '\033[33m',   # 黄色
        'ERROR': '\033[31m',     # 红色
        'CRITICAL': '\033[35m',  # 紫色
    }
    RESET = '\033[0m'

    def format(self, record):
        # 复制记录, 文件处理器不应看到颜色码
        record = copy.copy(record)
        log_color = self.COLORS.get(record.levelname, self.RESET)
        record.levelname = f"{log_color}{record.levelname}{self.RESET}"
        return super().format(record)


def _add_file_handler(logger: logging.Logger, log_file: str, format_string: str):
    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == str(Path(log_file).resolve()):
            return

    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(log_file, encoding='utf-8')
    file_handler.setFormatter(logging.Formatter(format_string))
    logger.addHandler(file_handler)


def setup_logger(
    name: str,
    level: str = "INFO",
    log_file: Optional[str] = None,
    format_string: Optional[str] = None
) -> logging.Logger:
    """设置日志记录器

    Args:
        name: 日志记录器名称
        level: 日志级别
        log_file: 日志文件路径
        format_string: 日志格式字符串

    Returns:
        配置好的日志记录器
    """
    logger = logging.getLogger(name)

    # 避免重复添加处理器
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False

    if format_string is None:
        format_string = DEFAULT_FORMAT

    # 控制台处理器
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ColoredFormatter(format_string))
    logger.addHandler(console_handler)

    if log_file:
        _add_file_handler(logger, log_file, format_string)

    return logger


def get_logger(name: str) -> logging.Logger:
    """获取应用子日志记录器

    服务日志记录器挂在 ``file_server`` 之下, 共享其处理器。
    """
    return logging.getLogger(f"{APP_LOGGER_NAME}.{name}")


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """按照配置调整全部日志记录器的级别和文件输出"""
    numeric_level = getattr(logging, level.upper())
    for logger in (app_logger, performance_logger, security_logger):
        logger.setLevel(numeric_level)
        if log_file:
            _add_file_handler(logger, log_file, DEFAULT_FORMAT)


# 创建专用的日志记录器
performance_logger = setup_logger(
    "performance",
    level="INFO",
    format_string="%(asctime)s - PERF - %(message)s"
)

security_logger = setup_logger(
    "security",
    level="INFO",
    format_string="%(asctime)s - SEC - %(levelname)s - %(message)s"
)

# 应用主日志记录器
app_logger = setup_logger(APP_LOGGER_NAME, level="INFO")


class SecurityMonitor:
    """安全监控器"""

    def __init__(self, logger: logging.Logger = security_logger):
        self.logger = logger

    def log_auth_attempt(self, username: str, success: bool, ip: str = "unknown"):
        """记录认证尝试"""
        if success:
            self.logger.info("Auth attempt succeeded - user: %s, ip: %s", username, ip)
        else:
            self.logger.warning("Auth attempt failed - user: %s, ip: %s", username, ip)

    def log_security_violation(self, violation_type: str, details: str, ip: str = "unknown"):
        """记录安全违规"""
        self.logger.warning("Security violation - type: %s, ip: %s, details: %s", violation_type, ip, details)

    def log_path_escape(self, relative_path: str, resolved: str):
        """记录越出根目录的路径"""
        self.log_security_violation("path_escape", f"{relative_path!r} resolved to {resolved}")

    def log_protected_violation(self, path: str, operation: str):
        """记录对受保护子树的修改尝试"""
        self.log_security_violation("protected_subtree", f"{operation} rejected for {path}")


# 创建监控器实例
security_monitor = SecurityMonitor()
