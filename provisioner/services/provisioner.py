"""部署编排器 - 运行锁 + 运行作用域 + 步骤执行器

职责：
- 拒绝并发运行（RunLock）
- 在 ProvisionRun 作用域内执行步骤，保证清理回调恰好执行一次
- 构建执行上下文，返回运行报告
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

import click

from provisioner.core.config import Config
from provisioner.core.context import ProvisionContext
from provisioner.core.lock import RunLock
from provisioner.core.models import RunReport, Step
from provisioner.core.run import ProvisionRun
from provisioner.core.runner import StepRunner
from provisioner.services.recipe import build_steps, register_cleanups
from provisioner.utils.shell import CommandExecutor, CommandRunner, LocalExecutor

logger = logging.getLogger(__name__)


class Provisioner:
    """Greenbone 部署编排器"""

    def __init__(
        self,
        config: Config,
        *,
        executor: CommandExecutor | None = None,
        echo: Callable[[str], None] = click.echo,
        handle_signals: bool = True,
    ) -> None:
        self.config = config
        self.commands = CommandRunner(
            executor=executor or LocalExecutor(),
            env={"GNUPGHOME": config.gnupg_home},
        )
        self.echo = echo
        self.handle_signals = handle_signals

    def plan(self) -> list[Step]:
        return build_steps(self.config)

    def run(self, steps: Sequence[Step] | None = None) -> RunReport:
        """执行部署流程

        Raises:
            ConcurrentRunError: 已有部署进程在运行
        """
        steps = list(steps) if steps is not None else self.plan()
        with RunLock(self.config.lock_file):
            with ProvisionRun(handle_signals=self.handle_signals) as run:
                ctx = ProvisionContext(config=self.config, commands=self.commands, run=run)
                register_cleanups(ctx, self.echo)
                logger.info("开始部署: %d 个步骤", len(steps))
                StepRunner(ctx).run(steps, run)
        return run.report
