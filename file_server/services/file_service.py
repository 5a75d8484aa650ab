# File Service
# Handles file system operations confined to the configured root

import os
import stat
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from fastapi import UploadFile
from starlette.concurrency import run_in_threadpool

from file_server.core.config import Settings
from file_server.core.exceptions import (
    ConflictError,
    ForbiddenError,
    IOFailureError,
    NotFoundError,
    ValidationError,
)
from file_server.core.logging import get_logger
from file_server.core.security import PathGuard, ProtectionOracle, sanitize_filename
from file_server.models.schemas import DirectoryEntry, DirectoryListing, SortField, SortOrder
from file_server.services.archive_service import ArchiveService, ArchiveStream
from file_server.services.base import BaseService
from file_server.services.trash_service import TrashService, rename_exclusive
from file_server.services.upload_service import UploadService


logger = get_logger("lister")


class DirectoryLister:
    """Lists the immediate children of a directory"""

    def list(self, directory: Path, sort_by: SortField = SortField.MODIFIED_TIME,
             descending: bool = False) -> List[DirectoryEntry]:
        """列出目录的直接子项

        读取不到元数据的子项记录日志后跳过。

        Args:
            directory: 已经过 PathGuard 的目录
            sort_by: 排序字段, 另一个字段作为次序键
            descending: 是否倒序

        Returns:
            List[DirectoryEntry]: 排序后的子项
        """
        try:
            iterator = os.scandir(directory)
        except FileNotFoundError as e:
            raise NotFoundError(f"Directory not found: {directory}", path=str(directory)) from e
        except NotADirectoryError as e:
            raise ValidationError(f"Path is not a directory: {directory}", field="path") from e
        except OSError as e:
            raise IOFailureError(f"Failed to list directory: {e}", operation="list", path=str(directory)) from e

        entries = []
        with iterator:
            for child in iterator:
                try:
                    info = child.stat()
                except OSError:
                    # 悬空符号链接: 显示链接本身
                    try:
                        info = child.stat(follow_symlinks=False)
                    except OSError as e:
                        logger.warning("Error accessing item: %s (%s)", child.path, e)
                        continue

                entries.append(DirectoryEntry(
                    name=child.name,
                    size=info.st_size,
                    is_directory=stat.S_ISDIR(info.st_mode),
                    modified_time=datetime.fromtimestamp(info.st_mtime).astimezone(),
                ))

        if sort_by == SortField.NAME:
            entries.sort(key=lambda entry: (entry.name, entry.modified_time), reverse=descending)
        else:
            entries.sort(key=lambda entry: (entry.modified_time, entry.name), reverse=descending)

        return entries


@dataclass
class ReadResult:
    """GET 的三种结果之一: 目录列表、文件、归档流"""
    path: Path
    listing: Optional[DirectoryListing] = None
    archive: Optional[ArchiveStream] = None

    @property
    def is_file(self) -> bool:
        return self.listing is None and self.archive is None


class FileService(BaseService):
    """Service for handling file system operations"""

    def __init__(self, settings: Settings):
        super().__init__("file", settings)
        self.path_guard = PathGuard(settings.root)
        self.protection = ProtectionOracle(
            settings.root,
            marker_name=settings.protection_marker,
            fail_closed=settings.protection_fail_closed,
        )
        self.lister = DirectoryLister()
        self.trash_service = TrashService(settings)
        self.upload_service = UploadService(settings)
        self.archive_service = ArchiveService(settings)

    @property
    def _children(self) -> List[BaseService]:
        return [self.trash_service, self.upload_service, self.archive_service]

    async def _initialize(self):
        """初始化文件服务"""
        for service in self._children:
            await service.initialize()
        self.log_info("File service initialized", root=str(self.settings.root))

    async def _cleanup(self):
        for service in reversed(self._children):
            await service.cleanup()

    def resolve(self, relative_path: str) -> Path:
        return self.path_guard.resolve(relative_path)

    def relative(self, path: Path) -> str:
        return self.path_guard.relative_to_root(path)

    async def open_target(self, relative_path: str, download: bool = False,
                          sort_by: Optional[SortField] = None,
                          order: Optional[SortOrder] = None) -> ReadResult:
        """列出目录, 或准备下载文件 / 目录归档"""
        async with self.performance_context("open_target"):
            path = self.resolve(relative_path)
            info = await run_in_threadpool(self._stat, path)

            if stat.S_ISREG(info.st_mode):
                return ReadResult(path=path)
            if not stat.S_ISDIR(info.st_mode):
                raise ValidationError("只能读取普通文件或目录", field="path", value=relative_path)

            if download:
                return ReadResult(path=path, archive=self.archive_service.open_stream(path))

            sort_by = sort_by or self.settings.default_sort
            order = order or self.settings.default_order
            items = await run_in_threadpool(
                self.lister.list, path, sort_by, order == SortOrder.DESC
            )
            return ReadResult(path=path, listing=DirectoryListing(items=items))

    async def upload(self, upload_file: UploadFile, destination: Optional[str] = None) -> str:
        """保存上传文件, 返回最终的相对路径"""
        name = sanitize_filename(upload_file.filename or "")
        directory = await run_in_threadpool(self._upload_directory, destination)

        target = await self.upload_service.save_upload(directory, name, upload_file)
        return self.relative(target)

    async def move(self, source: str, destination: str) -> str:
        """移动 (重命名) 文件或目录; 符号链接移动的是链接本身"""
        async with self.performance_context("move"):
            source_path = self.path_guard.resolve_entry(source)
            destination_path = self.path_guard.resolve_entry(destination)
            await run_in_threadpool(self._move, source_path, destination_path)
            return self.relative(destination_path)

    async def delete(self, relative_path: str, now: Optional[datetime] = None) -> str:
        """软删除: 移入回收站, 返回回收站中的相对路径"""
        async with self.performance_context("delete"):
            path = self.path_guard.resolve_entry(relative_path)
            target = await run_in_threadpool(self._delete, path, now or datetime.now())
            return self.relative(target)

    def _stat(self, path: Path) -> os.stat_result:
        try:
            return os.stat(path)
        except FileNotFoundError as e:
            raise NotFoundError(f"File not found: {self.relative(path)}", path=self.relative(path)) from e
        except OSError as e:
            raise IOFailureError(f"Failed to stat: {e}", operation="stat", path=str(path)) from e

    def _upload_directory(self, destination: Optional[str]) -> Path:
        if destination:
            directory = self.resolve(destination)
        else:
            directory = self.settings.upload_dir
            directory.mkdir(parents=True, exist_ok=True)

        if not directory.is_dir():
            raise NotFoundError(f"Destination directory not found: {destination}", path=destination)
        return directory

    def _ensure_mutable(self, path: Path, operation: str):
        if self.path_guard.is_root(path) or path == self.settings.trash_dir:
            self.log_warning(f"Refusing to {operation} reserved path: {path}")
            raise ForbiddenError("不能移动或删除根目录和回收站", path=self.relative(path), reason="reserved")
        self.protection.ensure_unprotected(path, operation)

        # 符号链接: 目标位于受保护子树时同样拒绝
        target = Path(os.path.realpath(path))
        if target != path and self.path_guard.contains(target):
            self.protection.ensure_unprotected(target, operation)

    def _move(self, source: Path, destination: Path):
        if not os.path.lexists(source):
            raise NotFoundError(f"Source file not found: {self.relative(source)}", path=self.relative(source))

        self._ensure_mutable(source, "move")

        if os.path.lexists(destination):
            raise ConflictError(f"Target already exists: {self.relative(destination)}", path=self.relative(destination))
        if not destination.parent.is_dir():
            raise NotFoundError(
                f"Destination directory not found: {self.relative(destination.parent)}",
                path=self.relative(destination.parent),
            )

        try:
            rename_exclusive(source, destination)
        except FileExistsError as e:
            raise ConflictError(f"Target already exists: {self.relative(destination)}", path=self.relative(destination)) from e
        except FileNotFoundError as e:
            raise NotFoundError(f"Source file not found: {self.relative(source)}", path=self.relative(source)) from e
        except OSError as e:
            self.log_error(f"Failed to move file: {source} -> {destination}", e)
            raise IOFailureError(f"Failed to move file: {e}", operation="move", path=str(source)) from e

        self.log_info(f"move file: {source} to {destination}")

    def _delete(self, path: Path, now: datetime) -> Path:
        if not os.path.lexists(path):
            raise NotFoundError(f"File not found: {self.relative(path)}", path=self.relative(path))

        self._ensure_mutable(path, "delete")
        return self.trash_service.soft_delete(path, now)
