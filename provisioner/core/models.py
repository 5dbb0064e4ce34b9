"""核心数据模型

步骤 (Step) 是纯数据：名称 + 前置条件 + 动作 + 后置条件 + 严重级别。
执行器把步骤列表当作数据解释执行，因此可以脱离真实包管理器和网络单独测试。
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from provisioner.core.context import ProvisionContext

Predicate = Callable[["ProvisionContext"], bool]
Action = Callable[["ProvisionContext"], None]


class Severity(str, Enum):
    """步骤严重级别"""

    REQUIRED = "required"   # 失败即中止整个运行
    OPTIONAL = "optional"   # 失败记 WARNING 后继续


class StepStatus(str, Enum):
    """单个步骤的执行结果"""

    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"     # 前置条件已满足
    WARNED = "warned"       # 成功但有告警，或可选步骤失败
    FAILED = "failed"


class RunState(str, Enum):
    """运行生命周期: RUNNING → {SUCCEEDED, ABORTED} → FINALIZED"""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    ABORTED = "aborted"
    FINALIZED = "finalized"


@dataclass(frozen=True)
class Step:
    """一个命名的部署步骤"""

    name: str
    action: Action
    precondition: Predicate | None = None
    postcondition: Predicate | None = None
    severity: Severity = Severity.REQUIRED
    description: str = ""
    timeout: float | None = None  # 秒，作用于步骤内每条命令

    @property
    def required(self) -> bool:
        return self.severity == Severity.REQUIRED


@dataclass
class StepResult:
    """步骤执行结果（类型化，替代"出错即退出进程"）"""

    name: str
    status: StepStatus
    returncode: int = 0
    message: str = ""
    duration: float = 0.0
    warnings: list[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.status == StepStatus.FAILED


@dataclass
class RunReport:
    """一次运行的汇总"""

    state: RunState = RunState.RUNNING
    exit_status: int = 0
    results: list[StepResult] = field(default_factory=list)
    failed_step: str = ""
    reason: str = ""

    @property
    def success(self) -> bool:
        return self.exit_status == 0 and not self.failed_step

    def count(self, status: StepStatus) -> int:
        return sum(1 for r in self.results if r.status == status)


def run_commands(*cmds: Sequence[str]) -> Action:
    """把若干条命令组装成一个步骤动作，按顺序经 CommandRunner 执行"""

    def action(ctx: ProvisionContext) -> None:
        for cmd in cmds:
            ctx.commands.run(cmd)

    return action
