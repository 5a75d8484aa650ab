# Trash Service
# Soft delete into timestamped quarantine batches

import errno
import os
import stat
from datetime import datetime
from pathlib import Path

from file_server.core.config import Settings
from file_server.core.exceptions import ConflictError, IOFailureError, NotFoundError
from file_server.core.logging import get_logger
from file_server.services.base import BaseService


logger = get_logger("trash")

# 不支持硬链接的文件系统返回的错误码
_NO_HARDLINK_ERRNOS = {errno.EPERM, errno.EOPNOTSUPP, errno.ENOTSUP, errno.EMLINK}


def rename_exclusive(source: Path, target: Path):
    """重命名, 但从不覆盖已存在的目标

    普通文件用 link + unlink, 目标已存在时由内核抛出 FileExistsError。
    目录和符号链接只能先检查再 rename, 两步之间仍有竞争窗口。

    Raises:
        FileExistsError: 目标已存在
        FileNotFoundError: 源路径不存在
    """
    if stat.S_ISREG(os.lstat(source).st_mode):
        try:
            os.link(source, target)
        except OSError as e:
            if isinstance(e, FileExistsError) or e.errno not in _NO_HARDLINK_ERRNOS:
                raise
            logger.debug("Hard links unsupported for %s (%s); using rename", source, e)
        else:
            os.unlink(source)
            return

    if os.path.lexists(target):
        raise FileExistsError(errno.EEXIST, "Target already exists", str(target))
    os.rename(source, target)


class TrashService(BaseService):
    """Moves deleted entries into ``<root>/<trash>/<timestamp>/`` instead of erasing them"""

    def __init__(self, settings: Settings):
        super().__init__("trash", settings)

    async def _initialize(self):
        self.settings.trash_dir.mkdir(parents=True, exist_ok=True)

    async def _cleanup(self):
        pass

    def batch_dir(self, now: datetime) -> Path:
        """某一秒的回收批次目录"""
        return self.settings.trash_dir / now.strftime(self.settings.trash_timestamp_format)

    def soft_delete(self, path: Path, now: datetime) -> Path:
        """把路径移动到当前批次目录

        Args:
            path: 已经过 PathGuard 与保护检查的绝对路径
            now: 删除时间, 精确到秒决定批次

        Returns:
            Path: 回收站中的新位置

        Raises:
            ConflictError: 同一批次中已有同名项
            NotFoundError: 源路径不存在
            IOFailureError: 其他文件系统错误
        """
        batch = self.batch_dir(now)
        try:
            # 并发删除可能同时创建批次目录, 已存在视为成功
            batch.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            self.log_error(f"Failed to create trash batch: {batch}", e)
            raise IOFailureError(f"Failed to create trash batch: {e}", operation="delete", path=str(batch)) from e

        target = batch / path.name
        try:
            rename_exclusive(path, target)
        except FileExistsError as e:
            raise ConflictError(f"Trash batch already holds {path.name}", path=str(target)) from e
        except FileNotFoundError as e:
            raise NotFoundError(f"File not found: {path}", path=str(path)) from e
        except OSError as e:
            self.log_error(f"Failed to move {path} to trash", e)
            raise IOFailureError(f"Failed to move to trash: {e}", operation="delete", path=str(path)) from e

        self.log_info(f"delete file: {path}", trash_path=str(target))
        return target
