# Archive Service
# Streams a directory as a ZIP archive without buffering it in memory

import os
import queue
import shutil
import threading
import weakref
import zipfile
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Iterator, Tuple, Union

from starlette.concurrency import run_in_threadpool

from file_server.core.config import Settings
from file_server.core.exceptions import ArchiveAbortedError
from file_server.core.logging import get_logger
from file_server.services.base import BaseService


logger = get_logger("archive")

# 生产者和消费者轮询取消标志的间隔 (秒)
POLL_INTERVAL = 0.1


class ArchiveState(str, Enum):
    """归档流状态"""
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ABORTED = "aborted"


_TERMINAL_STATES = (ArchiveState.COMPLETED, ArchiveState.ABORTED)


class _Done:
    pass


class _Failure:
    def __init__(self, error: BaseException):
        self.error = error


class _Cancelled(Exception):
    """Raised inside the producer once the consumer has closed the stream"""


def iter_archive_entries(directory: Union[str, Path]) -> Iterator[Tuple[Path, str, bool]]:
    """按确定顺序遍历目录树

    每一层按名称排序, 深度优先。符号链接既不跟随也不归档。

    Yields:
        (绝对路径, 以 / 分隔的归档名, 是否为空目录)
    """
    # 栈元素: (路径, 归档名, 是否目录)
    stack = [(Path(directory), "", True)]

    while stack:
        path, arcname, is_dir = stack.pop()
        if not is_dir:
            yield path, arcname, False
            continue

        with os.scandir(path) as it:
            entries = sorted(it, key=lambda entry: entry.name)

        if not entries:
            if arcname:
                yield path, arcname, True
            continue

        children = []
        for entry in entries:
            if entry.is_symlink():
                logger.debug("Skipping symlink in archive: %s", entry.path)
            elif entry.is_dir(follow_symlinks=False):
                children.append((Path(entry.path), f"{arcname}{entry.name}/", True))
            elif entry.is_file(follow_symlinks=False):
                children.append((Path(entry.path), f"{arcname}{entry.name}", False))
            else:
                logger.debug("Skipping non-regular file in archive: %s", entry.path)

        # 逆序压栈, 弹出时保持名称顺序
        stack.extend(reversed(children))


class _ChunkWriter:
    """File-like sink handed to ZipFile; cuts output into bounded chunks"""

    def __init__(self, stream: "ArchiveStream", chunk_size: int):
        self._stream = stream
        self._chunk_size = chunk_size
        self._buffer = bytearray()
        self._discarding = False

    def write(self, data) -> int:
        if self._discarding:
            return len(data)
        self._buffer += data
        while len(self._buffer) >= self._chunk_size:
            chunk = bytes(self._buffer[:self._chunk_size])
            del self._buffer[:self._chunk_size]
            self._stream._put(chunk)
        return len(data)

    def flush(self):
        pass

    def drain(self):
        if self._buffer and not self._discarding:
            chunk = bytes(self._buffer)
            self._buffer.clear()
            self._stream._put(chunk)

    def discard(self):
        self._discarding = True
        self._buffer.clear()


class ArchiveStream:
    """一个目录的 ZIP 归档流

    生产者线程遍历目录并写入 ZipFile, 输出经有界队列交给消费者;
    队列满时生产者阻塞。状态: IDLE -> STREAMING -> COMPLETED | ABORTED。
    """

    def __init__(self, directory: Union[str, Path], chunk_size: int = 64 * 1024, max_pending_chunks: int = 16):
        self.directory = Path(directory)
        self.chunk_size = chunk_size
        self._queue: "queue.Queue" = queue.Queue(maxsize=max_pending_chunks)
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._state = ArchiveState.IDLE
        self._thread = None

    @property
    def state(self) -> ArchiveState:
        return self._state

    def _transition(self, new_state: ArchiveState) -> bool:
        with self._lock:
            if self._state in _TERMINAL_STATES:
                return False
            self._state = new_state
            return True

    def start(self) -> "ArchiveStream":
        """启动生产者线程"""
        with self._lock:
            if self._state is not ArchiveState.IDLE:
                raise RuntimeError(f"archive stream already {self._state.value}")
            self._state = ArchiveState.STREAMING

        self._thread = threading.Thread(
            target=self._produce,
            name=f"archive-{self.directory.name or 'root'}",
            daemon=True,
        )
        self._thread.start()
        return self

    # -- producer side ----------------------------------------------------

    def _put(self, item):
        while True:
            if self._cancelled.is_set():
                raise _Cancelled()
            try:
                self._queue.put(item, timeout=POLL_INTERVAL)
                return
            except queue.Full:
                continue

    def _write_entry(self, archive: zipfile.ZipFile, path: Path, arcname: str, is_dir: bool):
        info = zipfile.ZipInfo.from_file(path, arcname, strict_timestamps=False)
        if is_dir:
            archive.writestr(info, b"")
            return

        info.compress_type = zipfile.ZIP_STORED
        with open(path, "rb") as source, archive.open(info, "w") as target:
            shutil.copyfileobj(source, target, self.chunk_size)

    def _produce(self):
        writer = _ChunkWriter(self, self.chunk_size)
        archive = None
        try:
            archive = zipfile.ZipFile(writer, mode="w", compression=zipfile.ZIP_STORED, allowZip64=True)
            for path, arcname, is_dir in iter_archive_entries(self.directory):
                if self._cancelled.is_set():
                    raise _Cancelled()
                self._write_entry(archive, path, arcname, is_dir)

            archive.close()
            writer.drain()
            self._put(_Done())
        except _Cancelled:
            logger.info("Archive stream cancelled by consumer: %s", self.directory)
        except Exception as e:
            logger.error("Archive stream failed for %s: %s", self.directory, e)
            try:
                self._put(_Failure(e))
            except _Cancelled:
                pass
        finally:
            # 出错后中央目录写入被丢弃, 只释放资源
            writer.discard()
            if archive is not None:
                try:
                    archive.close()
                except (OSError, ValueError) as e:
                    logger.debug("Ignoring error while closing aborted archive: %s", e)

    # -- consumer side ----------------------------------------------------

    def read(self) -> bytes:
        """取出下一块数据; 归档结束返回 b""

        Raises:
            ArchiveAbortedError: 生产者出错, 或流已被关闭
        """
        if self._state is ArchiveState.COMPLETED:
            return b""
        if self._state is ArchiveState.IDLE:
            raise RuntimeError("archive stream not started")

        while True:
            if self._cancelled.is_set():
                raise ArchiveAbortedError("Archive stream closed", directory=str(self.directory))
            try:
                item = self._queue.get(timeout=POLL_INTERVAL)
            except queue.Empty:
                continue

            if isinstance(item, _Done):
                self._transition(ArchiveState.COMPLETED)
                return b""
            if isinstance(item, _Failure):
                self._transition(ArchiveState.ABORTED)
                self._cancelled.set()
                raise ArchiveAbortedError(
                    f"Archive aborted: {item.error}", directory=str(self.directory)
                ) from item.error
            return item

    def close(self):
        """消费者提前离开: 终止流并唤醒被阻塞的生产者"""
        if not self._transition(ArchiveState.ABORTED):
            return
        self._cancelled.set()
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break

    def join(self, timeout: float = None) -> bool:
        """等待生产者线程退出, 返回是否已退出"""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def __iter__(self) -> Iterator[bytes]:
        try:
            while True:
                chunk = self.read()
                if not chunk:
                    return
                yield chunk
        finally:
            self.close()


class ArchiveService(BaseService):
    """Service for on-the-fly directory archives"""

    def __init__(self, settings: Settings):
        super().__init__("archive", settings)
        self._active: "weakref.WeakSet[ArchiveStream]" = weakref.WeakSet()

    async def _initialize(self):
        pass

    async def _cleanup(self):
        """中止所有仍在传输的归档"""
        streams = list(self._active)
        if streams:
            self.log_info("Aborting active archive streams", count=len(streams))
        for stream in streams:
            stream.close()

    def open_stream(self, directory: Path) -> ArchiveStream:
        """创建并启动归档流"""
        stream = ArchiveStream(
            directory,
            chunk_size=self.settings.archive_chunk_size,
            max_pending_chunks=self.settings.archive_queue_size,
        )
        self._active.add(stream)
        self.log_info(f"Archive stream started: {directory}")
        return stream.start()

    async def iterate(self, stream: ArchiveStream) -> AsyncIterator[bytes]:
        """在线程池中读取数据块, 结束时总是关闭流"""
        try:
            while True:
                chunk = await run_in_threadpool(stream.read)
                if not chunk:
                    break
                yield chunk
            self.log_info(f"Archive stream completed: {stream.directory}")
        finally:
            stream.close()
            self._active.discard(stream)
