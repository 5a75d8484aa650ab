"""文件服务核心模块

包含应用程序的核心功能：
- 配置管理
- 日志系统
- 安全验证
- 异常处理
"""

from .config import Settings
from .logging import get_logger, performance_logger, security_logger
from .security import PathGuard, ProtectionOracle
from .exceptions import FileServerException

__all__ = [
    'Settings',
    'get_logger',
    'performance_logger',
    'security_logger',
    'PathGuard',
    'ProtectionOracle',
    'FileServerException'
]
