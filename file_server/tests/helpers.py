"""测试辅助函数"""

import io
import os
from pathlib import Path

from fastapi import UploadFile


def make_upload(filename: str, content: bytes) -> UploadFile:
    """构造内存中的上传文件"""
    return UploadFile(file=io.BytesIO(content), filename=filename)


def write_file(path: Path, content: bytes = b"data") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


def set_mtime(path: Path, mtime: float) -> Path:
    os.utime(path, (mtime, mtime))
    return path
