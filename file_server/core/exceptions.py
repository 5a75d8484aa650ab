"""自定义异常模块"""

from typing import Optional, Dict, Any


class FileServerException(Exception):
    """文件服务基础异常类"""

    status_code = 500

    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """转换为错误响应格式"""
        return {
            "success": False,
            "error": self.message,
            "error_code": self.error_code,
            "details": self.details
        }


class ForbiddenError(FileServerException):
    """路径越出根目录, 或触碰受保护子树"""

    status_code = 403

    def __init__(self, message: str, path: Optional[str] = None, reason: Optional[str] = None):
        details = {}
        if path is not None:
            details["path"] = path
        if reason:
            details["reason"] = reason

        super().__init__(message, "FORBIDDEN", details)


class NotFoundError(FileServerException):
    """目标不存在"""

    status_code = 404

    def __init__(self, message: str, path: Optional[str] = None):
        details = {}
        if path is not None:
            details["path"] = path

        super().__init__(message, "NOT_FOUND", details)


class ConflictError(FileServerException):
    """目标名称已被占用"""

    status_code = 409

    def __init__(self, message: str, path: Optional[str] = None):
        details = {}
        if path is not None:
            details["path"] = path

        super().__init__(message, "CONFLICT", details)


class ResourceExhaustedError(FileServerException):
    """候选名称探测次数耗尽"""

    status_code = 507

    def __init__(self, message: str, limit: Optional[int] = None):
        details = {}
        if limit:
            details["limit"] = limit

        super().__init__(message, "RESOURCE_EXHAUSTED", details)


class IOFailureError(FileServerException):
    """未分类的底层文件系统错误"""

    status_code = 500

    def __init__(self, message: str, operation: Optional[str] = None, path: Optional[str] = None):
        details = {}
        if operation:
            details["operation"] = operation
        if path is not None:
            details["path"] = path

        super().__init__(message, "IO_FAILURE", details)


class ArchiveAbortedError(FileServerException):
    """归档流在传输中途终止"""

    status_code = 500

    def __init__(self, message: str, directory: Optional[str] = None):
        details = {}
        if directory is not None:
            details["directory"] = directory

        super().__init__(message, "ARCHIVE_ABORTED", details)


class ValidationError(FileServerException):
    """验证异常"""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None, value: Optional[Any] = None):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)

        super().__init__(message, "VALIDATION_ERROR", details)


class PayloadTooLargeError(FileServerException):
    """上传内容超出限制"""

    status_code = 413

    def __init__(self, message: str, limit: Optional[int] = None):
        details = {}
        if limit:
            details["limit"] = limit

        super().__init__(message, "PAYLOAD_TOO_LARGE", details)
