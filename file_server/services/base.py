"""服务层基础类"""

import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager

from file_server.core.config import Settings
from file_server.core.logging import get_logger, performance_logger


class BaseService(ABC):
    """服务基础类"""

    def __init__(self, service_name: str, settings: Settings):
        self.service_name = service_name
        self.settings = settings
        self.logger = get_logger(service_name)
        self._initialized = False

    async def initialize(self):
        """初始化服务"""
        if self._initialized:
            return

        self.logger.info(f"Initializing {self.service_name} service")
        await self._initialize()
        self._initialized = True
        self.logger.info(f"{self.service_name} service initialized successfully")

    async def cleanup(self):
        """清理服务资源"""
        if not self._initialized:
            return

        self.logger.info(f"Cleaning up {self.service_name} service")
        await self._cleanup()
        self._initialized = False
        self.logger.info(f"{self.service_name} service cleaned up successfully")

    @abstractmethod
    async def _initialize(self):
        """子类实现的初始化逻辑"""
        pass

    @abstractmethod
    async def _cleanup(self):
        """子类实现的清理逻辑"""
        pass

    @asynccontextmanager
    async def performance_context(self, operation: str, **kwargs):
        """性能监控上下文管理器"""
        start_time = time.time()
        try:
            yield
        finally:
            duration = time.time() - start_time
            performance_logger.info(
                f"Operation {self.service_name}.{operation} completed in {duration:.3f}s",
                extra={
                    "operation": f"{self.service_name}.{operation}",
                    "duration": duration,
                    **kwargs
                }
            )

    def log_error(self, message: str, error: Exception, **kwargs):
        """记录错误日志"""
        self.logger.error(
            message,
            extra={
                "error_type": type(error).__name__,
                "error_message": str(error),
                "service": self.service_name,
                **kwargs
            },
            exc_info=True
        )

    def log_info(self, message: str, **kwargs):
        """记录信息日志"""
        self.logger.info(
            message,
            extra={
                "service": self.service_name,
                **kwargs
            }
        )

    def log_warning(self, message: str, **kwargs):
        """记录警告日志"""
        self.logger.warning(
            message,
            extra={
                "service": self.service_name,
                **kwargs
            }
        )
