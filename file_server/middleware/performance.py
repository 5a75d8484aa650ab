"""性能监控中间件"""

import time
import traceback
import uuid
from typing import Callable, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from file_server.core.logging import performance_logger, security_logger


def get_client_ip(request: Request) -> str:
    """获取客户端IP地址

    Args:
        request: HTTP请求

    Returns:
        str: 客户端IP地址
    """
    # 检查代理头
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # 取第一个IP（原始客户端IP）
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    if request.client is not None:
        return request.client.host

    return "unknown"


class PerformanceMiddleware(BaseHTTPMiddleware):
    """性能监控中间件"""

    def __init__(self, app: ASGIApp, slow_request_threshold: float = 1.0):
        super().__init__(app)
        self.slow_request_threshold = slow_request_threshold

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """处理请求并监控性能

        流式响应只计到响应头发出为止。
        """
        # 生成请求ID
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.time()
        method = request.method
        url = str(request.url)
        client_ip = get_client_ip(request)

        performance_logger.debug(
            "Request started",
            extra={
                "request_id": request_id,
                "method": method,
                "url": url,
                "client_ip": client_ip,
                "event_type": "request_start"
            }
        )

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            performance_logger.error(
                f"Request failed: {method} {url} ({process_time:.3f}s)",
                extra={
                    "error": str(e),
                    "request_id": request_id,
                    "process_time": process_time,
                    "client_ip": client_ip,
                    "event_type": "request_error"
                }
            )
            raise

        process_time = time.time() - start_time

        # 添加性能头
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{process_time:.4f}"

        is_slow = process_time > self.slow_request_threshold
        log = performance_logger.warning if is_slow else performance_logger.info
        log(
            f"{method} {url} - {response.status_code} - {process_time:.3f}s" + (" (slow)" if is_slow else ""),
            extra={
                "request_id": request_id,
                "status_code": response.status_code,
                "process_time": process_time,
                "client_ip": client_ip,
                "is_slow": is_slow,
                "event_type": "request_complete"
            }
        )

        return response


class RequestSizeMiddleware(BaseHTTPMiddleware):
    """请求大小限制中间件"""

    def __init__(self, app: ASGIApp, max_size: Optional[int] = None):
        super().__init__(app)
        self.max_size = max_size

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """检查Content-Length头"""
        content_length = request.headers.get("content-length")
        if self.max_size is not None and content_length:
            try:
                size = int(content_length)
            except ValueError:
                # 无效的Content-Length头交给下游处理
                size = None

            if size is not None and size > self.max_size:
                security_logger.warning(
                    "Request size exceeded",
                    extra={
                        "content_length": size,
                        "max_size": self.max_size,
                        "client_ip": get_client_ip(request),
                        "url": str(request.url),
                        "event_type": "request_size_exceeded"
                    }
                )
                return JSONResponse(
                    status_code=413,
                    content={
                        "success": False,
                        "error": f"Request entity too large. Maximum size: {self.max_size} bytes",
                        "error_code": "PAYLOAD_TOO_LARGE",
                        "details": {"limit": self.max_size}
                    }
                )

        return await call_next(request)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """安全头中间件"""

    SECURITY_HEADERS = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Referrer-Policy": "strict-origin-when-cross-origin",
    }

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        for header, value in self.SECURITY_HEADERS.items():
            response.headers[header] = value

        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """错误处理中间件

    只处理响应开始之前的异常; 流式响应中途的错误必须让连接中断。
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            request_id = getattr(request.state, "request_id", "unknown")

            security_logger.error(
                f"Unhandled exception: {type(e).__name__}: {e}",
                extra={
                    "error_type": type(e).__name__,
                    "traceback": traceback.format_exc(),
                    "request_id": request_id,
                    "method": request.method,
                    "url": str(request.url),
                    "client_ip": get_client_ip(request),
                    "event_type": "unhandled_exception"
                }
            )

            return JSONResponse(
                status_code=500,
                content={
                    "success": False,
                    "error": "服务器内部错误",
                    "error_code": "INTERNAL_ERROR",
                    "details": {}
                },
                headers={"X-Request-ID": request_id}
            )


# 导出中间件类
__all__ = [
    "PerformanceMiddleware",
    "RequestSizeMiddleware",
    "SecurityHeadersMiddleware",
    "ErrorHandlingMiddleware",
    "get_client_ip"
]
