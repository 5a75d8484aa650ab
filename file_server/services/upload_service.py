# Upload Service
# Collision-free naming and streamed saving of uploaded files

import os
from pathlib import Path
from typing import Optional

import aiofiles
from fastapi import UploadFile

from file_server.core.config import Settings
from file_server.core.exceptions import (
    IOFailureError,
    PayloadTooLargeError,
    ResourceExhaustedError,
)
from file_server.services.base import BaseService


class UploadNamer:
    """Produces a collision-free file name inside a destination directory"""

    def __init__(self, probe_limit: int = 10_000):
        self.probe_limit = probe_limit

    def next_available_name(self, destination_dir: Path, desired_name: str) -> Path:
        """返回目标目录中第一个未被占用的文件路径

        依次尝试 ``name.ext``, ``name(1).ext``, ``name(2).ext`` ...
        只做存在性检查, 不预留名称。

        Args:
            destination_dir: 目标目录
            desired_name: 期望的文件名 (已清理过的基本名称)

        Returns:
            Path: 可用的文件路径

        Raises:
            ResourceExhaustedError: 超过探测上限
        """
        candidate = Path(destination_dir) / desired_name
        if not os.path.lexists(candidate):
            return candidate

        stem, ext = os.path.splitext(desired_name)
        for index in range(1, self.probe_limit + 1):
            candidate = Path(destination_dir) / f"{stem}({index}){ext}"
            if not os.path.lexists(candidate):
                return candidate

        raise ResourceExhaustedError(
            f"No free name for {desired_name} after {self.probe_limit} attempts",
            limit=self.probe_limit,
        )


class UploadService(BaseService):
    """Service for saving uploaded files"""

    def __init__(self, settings: Settings):
        super().__init__("upload", settings)
        self.namer = UploadNamer(settings.upload_probe_limit)

    async def _initialize(self):
        self.settings.upload_dir.mkdir(parents=True, exist_ok=True)

    async def _cleanup(self):
        pass

    async def save_upload(self, destination_dir: Path, desired_name: str, upload_file: UploadFile) -> Path:
        """把上传内容写入目标目录下不冲突的文件中

        名称探测之后用独占创建 (``xb``) 打开文件; 若并发请求抢先创建了同名文件,
        重新探测, 次数受探测上限约束。

        Returns:
            Path: 最终写入的文件路径
        """
        async with self.performance_context("save_upload"):
            for _ in range(self.namer.probe_limit):
                target = self.namer.next_available_name(destination_dir, desired_name)
                try:
                    await self._write_exclusive(target, upload_file)
                except FileExistsError:
                    self.log_warning(f"Upload target taken concurrently, probing again: {target}")
                    continue

                self.log_info(f"upload file: {target}")
                return target

            raise ResourceExhaustedError(
                f"No free name for {desired_name} after {self.namer.probe_limit} attempts",
                limit=self.namer.probe_limit,
            )

    async def _write_exclusive(self, target: Path, upload_file: UploadFile):
        limit: Optional[int] = self.settings.max_upload_size
        written = 0

        # FileExistsError 在任何写入之前抛出, 不会留下残留文件
        try:
            out = await aiofiles.open(target, "xb")
        except FileExistsError:
            raise
        except OSError as e:
            self.log_error(f"Failed to create upload: {target}", e)
            raise IOFailureError(f"Failed to create upload: {e}", operation="upload", path=str(target)) from e

        completed = False
        try:
            await upload_file.seek(0)
            while True:
                chunk = await upload_file.read(self.settings.upload_chunk_size)
                if not chunk:
                    break
                written += len(chunk)
                if limit is not None and written > limit:
                    raise PayloadTooLargeError(
                        f"Upload exceeds the maximum size of {limit} bytes",
                        limit=limit,
                    )
                await out.write(chunk)
            completed = True
        except OSError as e:
            self.log_error(f"Failed to write upload: {target}", e)
            raise IOFailureError(f"Failed to write upload: {e}", operation="upload", path=str(target)) from e
        finally:
            await out.close()
            # 失败或被取消时不留下半个文件
            if not completed:
                self._discard(target)

    def _discard(self, target: Path):
        try:
            target.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            self.log_error(f"Failed to remove partial upload: {target}", e)
