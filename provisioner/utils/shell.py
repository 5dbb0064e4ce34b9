"""Shell 命令执行工具 - 统一子进程调用

两层抽象：
  - CommandExecutor 协议：只负责"跑一条命令拿回结果"，测试时注入假实现
  - CommandRunner：所有变更操作的唯一入口，负责执行前后日志和失败即抛出

每条经 CommandRunner.run / apply 的操作恰好产生一条"执行"记录和一条结果记录。
只读探测走 probe()，只记 DEBUG 日志，失败不抛异常。
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Protocol, TypeVar

from provisioner.core.exceptions import CommandFailedError, ProvisionError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# 失败日志里附带的 stderr 末尾长度
STDERR_TAIL = 500


# =========================================================================
# 命令执行结果
# =========================================================================

@dataclass
class CommandResult:
    """命令执行结果（与 subprocess 解耦）"""

    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def command_line(self) -> str:
        return shlex.join(self.args)


# =========================================================================
# 命令执行器协议
# =========================================================================

class CommandExecutor(Protocol):
    """命令执行器协议 - 抽象子进程调用

    实现此协议即可替换底层执行方式。测试时注入假实现，无需 patch subprocess。
    """

    def execute(
        self,
        args: list[str],
        *,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        input: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """执行命令并返回结果，不因非零状态抛异常"""
        ...


class LocalExecutor:
    """本地子进程执行器（默认实现）"""

    def execute(
        self,
        args: list[str],
        *,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        input: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        try:
            r = subprocess.run(
                args, capture_output=True, text=True, input=input,
                cwd=cwd, env=dict(env) if env is not None else None,
                check=False, timeout=timeout,
            )
        except OSError as e:
            # 与 shell 约定一致：命令不存在 → 127，无法执行 → 126
            rc = 127 if isinstance(e, FileNotFoundError) else 126
            return CommandResult(args=list(args), returncode=rc, stderr=str(e))
        except subprocess.TimeoutExpired:
            return CommandResult(
                args=list(args), returncode=124,
                stderr=f"超时 ({timeout}s)",
            )
        return CommandResult(
            args=list(args), returncode=r.returncode,
            stdout=r.stdout or "", stderr=r.stderr or "",
        )


# =========================================================================
# 命令运行器：日志 + 失败即抛
# =========================================================================

@dataclass
class CommandRunner:
    """所有变更操作的统一入口

    Attributes:
        executor: 底层执行器
        env: 叠加在 os.environ 之上的环境变量（如 GNUPGHOME）
        timeout: 单条命令超时（秒），None 表示不限
        failure_level: 命令失败记录的日志级别（可选步骤内降为 WARNING）
    """

    executor: CommandExecutor = field(default_factory=LocalExecutor)
    env: dict[str, str] = field(default_factory=dict)
    timeout: float | None = None
    failure_level: int = logging.ERROR

    def _environ(self, extra: Mapping[str, str] | None) -> dict[str, str]:
        return {**os.environ, **self.env, **(extra or {})}

    def run(
        self,
        cmd: Sequence[str],
        *,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        input: str | None = None,
        check: bool = True,
    ) -> CommandResult:
        """执行一条外部命令

        Args:
            cmd: 参数列表（不经过 shell）
            cwd: 工作目录
            env: 额外环境变量
            input: 写入 stdin 的文本
            check: True 时非零状态抛 CommandFailedError；
                False 时记一条 WARNING 并返回结果

        Raises:
            CommandFailedError: check=True 且命令返回非零
        """
        args = [str(a) for a in cmd]
        display = shlex.join(args)
        logger.info("执行: %s", display)
        result = self.executor.execute(
            args, cwd=cwd, env=self._environ(env),
            input=input, timeout=self.timeout,
        )
        if result.success:
            logger.info("完成: %s", display)
            return result
        tail = result.stderr.strip()[-STDERR_TAIL:]
        if not check:
            logger.warning("失败已忽略 (rc=%d): %s", result.returncode, display)
            return result
        logger.log(
            self.failure_level, "失败 (rc=%d): %s%s", result.returncode, display,
            f"\n{tail}" if tail else "",
        )
        raise CommandFailedError(display, result.returncode, result.stderr)

    def apply(
        self, description: str, func: Callable[..., T], *args: object,
        **kwargs: object,
    ) -> T:
        """执行一个 Python 侧的变更操作（写文件、改权限等），日志与 run 一致

        Raises:
            CommandFailedError: 操作抛出 OSError（状态码记为 1）
            ProvisionError: 操作自身抛出的部署异常，记录结果后原样抛出
        """
        logger.info("执行: %s", description)
        try:
            value = func(*args, **kwargs)
        except ProvisionError as e:
            logger.log(
                self.failure_level, "失败 (rc=%d): %s (%s)", e.returncode, description, e,
            )
            raise
        except OSError as e:
            logger.log(self.failure_level, "失败 (rc=1): %s (%s)", description, e)
            raise CommandFailedError(description, 1, str(e)) from e
        logger.info("完成: %s", description)
        return value

    def probe(
        self,
        cmd: Sequence[str],
        *,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """只读探测命令（前置/后置条件用），只记 DEBUG 日志，从不抛异常"""
        args = [str(a) for a in cmd]
        result = self.executor.execute(
            args, cwd=cwd, env=self._environ(env), timeout=self.timeout,
        )
        logger.debug("探测 rc=%d: %s", result.returncode, shlex.join(args))
        return result
