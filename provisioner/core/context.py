"""执行上下文 - 显式传递给每个步骤的配置与服务

替代原脚本的进程级全局变量：配置、命令运行器、当前运行对象都从这里取。
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from provisioner.core.config import Config
from provisioner.utils.shell import CommandRunner

if TYPE_CHECKING:
    from provisioner.core.models import RunReport, Step
    from provisioner.core.run import ProvisionRun

logger = logging.getLogger(__name__)


@dataclass
class ProvisionContext:
    """步骤执行上下文

    Attributes:
        config: 只读配置
        commands: 变更操作的统一入口
        run: 当前运行，用于登记清理回调
        disclosures: 运行结束时一次性展示给操作员的信息（跨步骤共享）
        warnings: 当前步骤记录的告警（每个步骤独立）
    """

    config: Config
    commands: CommandRunner = field(default_factory=CommandRunner)
    run: ProvisionRun | None = None
    disclosures: dict[str, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    def for_step(self, step: Step) -> ProvisionContext:
        """派生单个步骤使用的上下文：独立告警列表，步骤级超时

        可选步骤的命令失败不会中止运行，失败记录降为 WARNING。
        """
        timeout = step.timeout if step.timeout is not None else self.config.step_timeout
        level = logging.ERROR if step.required else logging.WARNING
        commands = replace(self.commands, timeout=timeout, failure_level=level)
        return replace(self, commands=commands, warnings=[])

    def warn(self, message: str) -> None:
        """记录"成功但有告警"，不会升级为失败"""
        logger.warning(message)
        self.warnings.append(message)

    def add_cleanup(self, name: str, func: Callable[[], object]) -> None:
        if self.run is None:
            logger.warning("无运行对象，清理回调未登记: %s", name)
            return
        self.run.add_cleanup(name, func)

    def on_close(self, func: Callable[[RunReport], object]) -> None:
        if self.run is None:
            logger.warning("无运行对象，收尾输出未登记")
            return
        self.run.on_close(func)

    def disclose(self, label: str, value: str) -> None:
        """登记运行结束时展示给操作员的信息"""
        self.disclosures[label] = value
