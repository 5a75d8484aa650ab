"""应用程序配置模块"""

import os
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from file_server.models.schemas import SortField, SortOrder


class Settings(BaseSettings):
    """应用程序设置

    一个实例在启动时构建, 并显式传递给每个组件。
    """

    model_config = SettingsConfigDict(
        env_prefix="FILE_SERVER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # 应用基础配置
    app_name: str = "File Server"
    app_version: str = "1.0.0"
    debug: bool = False

    # 服务器配置
    host: str = "0.0.0.0"
    port: int = 8080

    # 文件存储配置
    root: Path = Field(default_factory=Path.cwd, validate_default=True, description="所有操作限定的根目录")
    upload_dir_name: str = "upload"
    trash_dir_name: str = "trash"
    trash_timestamp_format: str = "%Y-%m-%d-%H-%M-%S"

    # 保护标记
    protection_marker: str = "DO_NOT_DELETE"
    protection_fail_closed: bool = False

    # 上传配置
    upload_probe_limit: int = Field(default=10_000, ge=1)
    upload_chunk_size: int = Field(default=1024 * 1024, ge=1)
    max_upload_size: Optional[int] = None
    max_request_size: Optional[int] = None

    # 归档流配置
    archive_chunk_size: int = Field(default=64 * 1024, ge=1)
    archive_queue_size: int = Field(default=16, ge=1)

    # 列表排序
    default_sort: SortField = SortField.MODIFIED_TIME
    default_order: SortOrder = SortOrder.ASC

    # 共享凭据
    auth_username: str = "direct"
    auth_password: Optional[str] = None

    # 日志配置
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # 性能配置
    slow_request_threshold: float = 1.0

    @field_validator("root")
    @classmethod
    def _canonical_root(cls, value: Path) -> Path:
        """根目录必须存在, 并规范化为绝对真实路径"""
        resolved = Path(os.path.realpath(os.path.expanduser(str(value))))
        if not resolved.is_dir():
            raise ValueError(f"root is not a directory: {value}")
        return resolved

    @field_validator("upload_dir_name", "trash_dir_name", "protection_marker")
    @classmethod
    def _plain_name(cls, value: str) -> str:
        """保留名称只能是单个路径段"""
        if not value or value in (".", "..") or "/" in value or "\\" in value:
            raise ValueError(f"must be a single path segment: {value!r}")
        return value

    @property
    def upload_dir(self) -> Path:
        """上传暂存目录"""
        return self.root / self.upload_dir_name

    @property
    def trash_dir(self) -> Path:
        """回收站根目录"""
        return self.root / self.trash_dir_name

    def ensure_directories(self):
        """确保必要的目录存在"""
        for directory in (self.upload_dir, self.trash_dir):
            directory.mkdir(parents=True, exist_ok=True)
