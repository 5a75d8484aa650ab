"""文件服务器主应用"""

import argparse
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

# 导入配置和核心模块
from file_server.core.config import Settings
from file_server.core.exceptions import FileServerException
from file_server.core.logging import security_logger, setup_logging
from file_server.models.schemas import ErrorResponse

# 导入中间件
from file_server.middleware.performance import (
    ErrorHandlingMiddleware,
    PerformanceMiddleware,
    RequestSizeMiddleware,
    SecurityHeadersMiddleware,
)

# 导入API路由
from file_server.api.files import router as files_router

# 导入服务
from file_server.services.file_service import FileService


def _error_response(request: Request, status_code: int, content: dict,
                    headers: Optional[dict] = None) -> JSONResponse:
    """统一的错误响应格式"""
    request_id = getattr(request.state, "request_id", "unknown")

    log = security_logger.error if status_code >= 500 else security_logger.warning
    log(
        f"{request.method} {request.url.path} failed: {status_code} {content['error']}",
        extra={
            "request_id": request_id,
            "status_code": status_code,
            "error_code": content.get("error_code"),
            "url": str(request.url)
        }
    )

    return JSONResponse(
        status_code=status_code,
        content=content,
        headers={"X-Request-ID": request_id, **(headers or {})}
    )


def register_exception_handlers(app: FastAPI):
    """注册全局异常处理器"""

    @app.exception_handler(FileServerException)
    async def file_server_exception_handler(request: Request, exc: FileServerException):
        return _error_response(request, exc.status_code, exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """请求验证异常处理器"""
        fields = [".".join(str(part) for part in error.get("loc", ())) for error in exc.errors()]
        error = ErrorResponse(error="请求参数验证失败", error_code="VALIDATION_ERROR", details={"fields": fields})
        return _error_response(request, 422, error.model_dump())

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """HTTP异常处理器"""
        error = ErrorResponse(error=str(exc.detail), details={})
        return _error_response(
            request, exc.status_code, error.model_dump(), headers=getattr(exc, "headers", None)
        )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """创建应用实例

    每个实例持有自己的配置和服务, 互不共享状态。
    """
    settings = settings or Settings()
    file_service = FileService(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """应用生命周期管理"""
        setup_logging(settings.log_level, settings.log_file)
        try:
            # 确保必要的目录存在
            settings.ensure_directories()
            await file_service.initialize()
        except Exception as e:
            security_logger.error(
                "Error during startup",
                extra={
                    "error": str(e),
                    "event_type": "startup_error"
                }
            )
            raise

        if settings.auth_password is None:
            security_logger.warning(
                "No password configured; move and delete are open to everyone",
                extra={"event_type": "auth_disabled"}
            )

        security_logger.info(
            "File server started",
            extra={
                "version": settings.app_version,
                "root": str(settings.root),
                "host": settings.host,
                "port": settings.port,
                "event_type": "startup"
            }
        )

        try:
            yield
        finally:
            await file_service.cleanup()
            security_logger.info("File server stopped", extra={"event_type": "shutdown"})

    app = FastAPI(
        title=settings.app_name,
        description="根目录受限的文件浏览、上传、移动与软删除服务",
        version=settings.app_version,
        debug=settings.debug,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None
    )
    app.state.settings = settings
    app.state.file_service = file_service

    # 中间件按照相反的顺序执行, 最后添加的最先执行
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestSizeMiddleware, max_size=settings.max_request_size)
    app.add_middleware(PerformanceMiddleware, slow_request_threshold=settings.slow_request_threshold)

    register_exception_handlers(app)
    app.include_router(files_router)

    # 健康检查
    @app.get("/health", include_in_schema=False)
    async def health_check():
        """健康检查"""
        return {
            "status": "healthy",
            "version": settings.app_version,
            "root": str(settings.root)
        }

    return app


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve a directory tree over HTTP")
    parser.add_argument("--root", help="directory to serve (default: current directory)")
    parser.add_argument("--host", help="listen address")
    parser.add_argument("--port", type=int, help="listen port")
    return parser.parse_args(argv)


def main(argv=None):
    import uvicorn

    args = parse_args(argv)
    overrides = {key: value for key, value in vars(args).items() if value is not None}
    settings = Settings(**overrides)

    # 运行应用
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    main()
