"""单元测试共享 fixture - 假命令执行器 + 临时目录配置

整体思路:

  FakeExecutor              ProvisionContext            被测步骤
  ┌──────────────┐     ┌──────────────────┐     ┌──────────────────┐
  │ when(...)    │────>│ CommandRunner    │<────│ step.action(ctx) │
  │   预设结果   │     │   日志 + 失败抛出│     │ precondition     │
  │ calls        │<────│                  │     │ postcondition    │
  │   调用记录   │     └──────────────────┘     └──────────────────┘
  └──────────────┘

所有目录都落在 tmp_path 下，测试不触碰真实系统、不需要 root。
"""

from __future__ import annotations

import getpass
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from provisioner.core.config import Config
from provisioner.core.context import ProvisionContext
from provisioner.utils.shell import CommandResult, CommandRunner


@dataclass
class _Rule:
    tokens: tuple[str, ...]
    returncode: int = 0
    stdout: str = ""
    stderr: str = ""
    effect: Callable[[list[str]], None] | None = None


@dataclass
class FakeExecutor:
    """按参数匹配返回预设结果的命令执行器

    when() 登记的规则后登记者优先；参数中包含规则全部 token 即视为匹配。
    未匹配的命令默认成功（rc=0，无输出）。
    """

    default_rc: int = 0
    calls: list[list[str]] = field(default_factory=list)
    inputs: list[str | None] = field(default_factory=list)
    timeouts: list[float | None] = field(default_factory=list)
    _rules: list[_Rule] = field(default_factory=list)

    def when(
        self, *tokens: str, returncode: int = 0, stdout: str = "",
        stderr: str = "", effect: Callable[[list[str]], None] | None = None,
    ) -> FakeExecutor:
        self._rules.append(_Rule(tokens, returncode, stdout, stderr, effect))
        return self

    def execute(
        self,
        args: list[str],
        *,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        input: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        self.calls.append(list(args))
        self.inputs.append(input)
        self.timeouts.append(timeout)
        for rule in reversed(self._rules):
            if all(t in args for t in rule.tokens):
                if rule.effect is not None:
                    rule.effect(args)
                return CommandResult(list(args), rule.returncode, rule.stdout, rule.stderr)
        return CommandResult(list(args), self.default_rc)

    def ran(self, *tokens: str) -> bool:
        """是否执行过包含全部 token 的命令"""
        return any(all(t in call for t in tokens) for call in self.calls)


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """全部路径指向 tmp_path 的配置，服务账户为当前用户"""
    me = getpass.getuser()
    return Config(
        install_prefix=str(tmp_path / "prefix"),
        source_dir=str(tmp_path / "source"),
        build_dir=str(tmp_path / "build"),
        install_dir=str(tmp_path / "install"),
        state_dir=str(tmp_path / "state"),
        gnupg_home=str(tmp_path / "gnupg"),
        openvas_gnupg_home=str(tmp_path / "openvas-gnupg"),
        log_file=str(tmp_path / "log" / "provision.log"),
        lock_file=str(tmp_path / "run" / "provision.lock"),
        credential_file=str(tmp_path / "credential"),
        signing_key_file=str(tmp_path / "signing-key.asc"),
        systemd_dir=str(tmp_path / "systemd"),
        sudoers_file=str(tmp_path / "sudoers.d" / "gvm"),
        openvas_conf=str(tmp_path / "openvas" / "openvas.conf"),
        redis_conf_dir=str(tmp_path / "redis"),
        service_user=me,
        gsad_listen="127.0.0.1",
    )


@pytest.fixture
def ctx(config: Config, executor: FakeExecutor) -> ProvisionContext:
    return ProvisionContext(config=config, commands=CommandRunner(executor=executor))
