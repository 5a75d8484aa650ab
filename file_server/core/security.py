"""安全验证模块

根目录限定 (PathGuard) 与受保护子树判定 (ProtectionOracle)。
"""

import os
from pathlib import Path, PurePosixPath
from typing import Union

from .exceptions import ForbiddenError, ValidationError
from .logging import get_logger, security_monitor


logger = get_logger("security")


def _is_within(root: str, candidate: str) -> bool:
    """按路径段判断 candidate 是否位于 root 之内 (含 root 本身)"""
    try:
        return os.path.commonpath([root, candidate]) == root
    except ValueError:
        # 不同驱动器, 或混用绝对与相对路径
        return False


class PathGuard:
    """把不可信的相对路径解析为根目录内的绝对路径"""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(os.path.realpath(root))
        self._root_str = str(self.root)

    def resolve(self, relative_path: str) -> Path:
        """安全地组合相对路径和根目录

        Args:
            relative_path: 用户提供的相对路径, 开头的分隔符会被忽略

        Returns:
            Path: 规范化后位于根目录内的绝对路径

        Raises:
            ForbiddenError: 路径无法规范化, 或规范化结果越出根目录
        """
        relative_path = relative_path or ""
        if "\x00" in relative_path:
            security_monitor.log_security_violation("null_byte", repr(relative_path))
            raise ForbiddenError("路径包含非法字符", path=relative_path, reason="null_byte")

        # 去掉开头的分隔符, 否则 join 会丢弃根目录
        clean_path = relative_path.lstrip("/\\")

        try:
            resolved = os.path.realpath(os.path.join(self._root_str, clean_path))
        except (OSError, ValueError) as e:
            security_monitor.log_security_violation("unresolvable_path", f"{relative_path!r}: {e}")
            raise ForbiddenError("路径无法解析", path=relative_path, reason="unresolvable") from e

        if not _is_within(self._root_str, resolved):
            security_monitor.log_path_escape(relative_path, resolved)
            raise ForbiddenError("路径超出根目录范围", path=relative_path, reason="outside_root")

        return Path(resolved)

    def resolve_entry(self, relative_path: str) -> Path:
        """解析要被移动或删除的目录项本身

        父目录按 resolve 规范化并检查, 最后一段保持原样, 符号链接指向的是链接本身而不是目标。

        Raises:
            ForbiddenError: 父目录越出根目录
        """
        relative_path = relative_path or ""
        if "\x00" in relative_path:
            security_monitor.log_security_violation("null_byte", repr(relative_path))
            raise ForbiddenError("路径包含非法字符", path=relative_path, reason="null_byte")

        clean_path = relative_path.lstrip("/\\").rstrip("/")
        head, _, tail = clean_path.rpartition("/")
        if tail in ("", ".", ".."):
            return self.resolve(clean_path)

        return self.resolve(head) / tail

    def contains(self, path: Path) -> bool:
        return _is_within(self._root_str, str(path))

    def is_root(self, path: Path) -> bool:
        return str(path) == self._root_str

    def relative_to_root(self, path: Path) -> str:
        """把根目录内的绝对路径渲染成以 / 分隔的相对路径"""
        relative = Path(path).relative_to(self.root)
        return PurePosixPath(*relative.parts).as_posix() if relative.parts else ""


class ProtectionOracle:
    """沿祖先链查找保护标记文件"""

    def __init__(self, root: Union[str, Path], marker_name: str = "DO_NOT_DELETE", fail_closed: bool = False):
        self.root = Path(os.path.realpath(root))
        self.marker_name = marker_name
        self.fail_closed = fail_closed

    def _marker_present(self, directory: Path) -> bool:
        try:
            os.stat(directory / self.marker_name)
            return True
        except (FileNotFoundError, NotADirectoryError):
            return False
        except OSError as e:
            logger.warning(
                "Cannot check protection marker in %s (%s); treating level as %s",
                directory, e, "protected" if self.fail_closed else "unprotected",
            )
            return self.fail_closed

    def is_protected(self, path: Union[str, Path]) -> bool:
        """判断路径或其任一祖先 (直到并包括根目录) 是否带有保护标记

        Args:
            path: 已经过 PathGuard 的绝对路径

        Returns:
            bool: 找到标记返回 True
        """
        current = Path(path)
        # 迭代上限由路径深度决定
        max_levels = len(current.parts) + 1

        for _ in range(max_levels):
            if self._marker_present(current):
                return True

            if current == self.root:
                break

            parent = current.parent
            if parent == current:
                # 已到达文件系统根
                break
            current = parent

        return False

    def ensure_unprotected(self, path: Path, operation: str):
        """受保护时抛出 ForbiddenError"""
        if self.is_protected(path):
            security_monitor.log_protected_violation(str(path), operation)
            relative = Path(path).relative_to(self.root).as_posix()
            raise ForbiddenError("目标位于受保护的目录中", path=relative, reason="protected")


def sanitize_filename(filename: str) -> str:
    """把客户端提供的文件名缩减为基本名称

    Raises:
        ValidationError: 文件名为空或非法
    """
    if not filename or "\x00" in filename:
        raise ValidationError("文件名不能为空或包含非法字符", field="filename", value=filename)

    # 兼容 Windows 客户端提交的完整路径
    name = filename.replace("\\", "/").rsplit("/", 1)[-1].strip()
    if not name or name in (".", ".."):
        raise ValidationError("文件名无效", field="filename", value=filename)

    return name
