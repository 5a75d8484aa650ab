"""文件操作API路由"""

import urllib.parse
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse
from starlette.types import Receive, Scope, Send

from file_server.api.dependencies import get_file_service, logout_challenge, require_credentials
from file_server.core.logging import performance_logger
from file_server.models.schemas import ErrorResponse, PathResponse, SortField, SortOrder
from file_server.services.archive_service import ArchiveService, ArchiveStream
from file_server.services.file_service import FileService

router = APIRouter(
    prefix="/file-server/api",
    tags=["files"],
    responses={
        403: {"model": ErrorResponse, "description": "路径越界或受保护"},
        404: {"model": ErrorResponse, "description": "路径不存在"},
        500: {"model": ErrorResponse, "description": "文件系统错误"},
    },
)


def _attachment(filename: str) -> str:
    # 对文件名进行URL编码以支持中文字符
    encoded_filename = urllib.parse.quote(filename, safe='')
    return f"attachment; filename*=UTF-8''{encoded_filename}"


class ArchiveResponse(StreamingResponse):
    """目录归档的流式响应

    无论正常结束、出错还是客户端断开, 归档流都会被关闭。
    """

    def __init__(self, stream: ArchiveStream, archive_service: ArchiveService, filename: str):
        self.stream = stream
        super().__init__(
            archive_service.iterate(stream),
            media_type="application/zip",
            headers={"Content-Disposition": _attachment(filename)},
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            self.stream.close()


def _archive_name(directory: Path) -> str:
    return f"{directory.name or 'root'}.zip"


@router.get("/file", response_model=None)
async def read_file(
    path: str = Query("", description="相对于根目录的路径"),
    download: bool = Query(False, description="目录以 ZIP 归档下载"),
    sort: Optional[SortField] = Query(None, description="排序字段: modifiedTime, name"),
    order: Optional[SortOrder] = Query(None, description="排序方向: asc, desc"),
    file_service: FileService = Depends(get_file_service),
):
    """列出目录, 下载文件或目录归档"""
    result = await file_service.open_target(path, download=download, sort_by=sort, order=order)

    if result.archive is not None:
        performance_logger.info("Directory archive requested", extra={"target": path})
        return ArchiveResponse(
            result.archive,
            file_service.archive_service,
            filename=_archive_name(result.path),
        )

    if result.is_file:
        return FileResponse(
            result.path,
            headers={"Content-Disposition": _attachment(result.path.name)},
        )

    return JSONResponse(content=result.listing.model_dump(mode="json", by_alias=True))


@router.post("/file", response_model=PathResponse, responses={400: {"model": ErrorResponse}, 507: {"model": ErrorResponse}})
@router.post("/upload", response_model=PathResponse, responses={400: {"model": ErrorResponse}, 507: {"model": ErrorResponse}})
async def upload_file(
    file: UploadFile = File(...),
    path: Optional[str] = Form(None, description="目标目录, 默认为上传暂存目录"),
    file_service: FileService = Depends(get_file_service),
):
    """上传文件, 同名时自动改名"""
    try:
        stored = await file_service.upload(file, destination=path)
    finally:
        await file.close()

    performance_logger.info("File uploaded", extra={"stored_path": stored})
    return PathResponse(path=stored)


@router.put("/file", response_model=PathResponse, responses={401: {"model": ErrorResponse}, 409: {"model": ErrorResponse}})
async def move_file(
    path: str = Query(..., description="源路径"),
    dest: str = Query(..., description="目标路径"),
    file_service: FileService = Depends(get_file_service),
    _user: Optional[str] = Depends(require_credentials),
):
    """移动或重命名"""
    moved = await file_service.move(path, dest)
    return PathResponse(path=moved)


@router.delete("/file", response_model=PathResponse, responses={401: {"model": ErrorResponse}, 409: {"model": ErrorResponse}})
async def delete_file(
    path: str = Query(..., description="要删除的路径"),
    file_service: FileService = Depends(get_file_service),
    _user: Optional[str] = Depends(require_credentials),
):
    """移入回收站"""
    trashed = await file_service.delete(path)
    return PathResponse(path=trashed)


@router.api_route("/logout", methods=["GET", "POST", "PUT", "DELETE"])
async def logout():
    raise logout_challenge()
