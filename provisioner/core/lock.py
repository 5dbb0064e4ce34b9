"""运行锁 - 拒绝并发部署

两个部署进程同时操作源码/构建/暂存目录会互相破坏，因此运行开始前
对锁文件加非阻塞排他 flock，拿不到锁直接报错退出而不是排队等待。
"""

from __future__ import annotations

import fcntl
import logging
import os
from pathlib import Path
from types import TracebackType
from typing import IO

from provisioner.core.exceptions import ConcurrentRunError

logger = logging.getLogger(__name__)


class RunLock:
    """基于 fcntl.flock 的进程级排他锁"""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._fh: IO[str] | None = None

    def acquire(self) -> None:
        """获取锁，失败抛 ConcurrentRunError"""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fh = open(self.path, "a+", encoding="utf-8")
        try:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            fh.seek(0)
            holder = fh.read().strip() or "未知进程"
            fh.close()
            raise ConcurrentRunError(
                f"另一个部署进程正在运行 ({holder})，锁文件: {self.path}"
            ) from None
        fh.seek(0)
        fh.truncate()
        fh.write(f"pid={os.getpid()}\n")
        fh.flush()
        self._fh = fh
        logger.debug("已获取运行锁: %s", self.path)

    def release(self) -> None:
        if self._fh is None:
            return
        try:
            fcntl.flock(self._fh.fileno(), fcntl.LOCK_UN)
        finally:
            self._fh.close()
            self._fh = None
        logger.debug("已释放运行锁: %s", self.path)

    def __enter__(self) -> RunLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()
