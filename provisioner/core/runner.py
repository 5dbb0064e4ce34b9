"""步骤执行器 - 按声明顺序解释执行步骤列表

每个步骤:
  1. 前置条件成立 → 跳过（重复运行时的幂等路径）
     前置条件无法判定（检查本身出错）→ 按"不成立"处理，照常执行动作
  2. 执行动作（所有命令经 CommandRunner）
  3. 检查后置条件，不成立视同命令失败
  4. 必需步骤失败 → 中止运行，后续步骤不再执行
     可选步骤失败 → 记 WARNING，继续下一步

步骤严格串行，不重试；重新运行整个列表就是重试机制。
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence

from provisioner.core.context import ProvisionContext
from provisioner.core.exceptions import (
    PostconditionError,
    ProvisionError,
    RunInterrupted,
    ValidationError,
)
from provisioner.core.models import RunReport, Step, StepResult, StepStatus
from provisioner.core.run import ProvisionRun

logger = logging.getLogger(__name__)

# 步骤内检查/动作抛出这些异常时按步骤失败处理，其余异常直接向上传播
_STEP_ERRORS = (ProvisionError, OSError, ValueError)


def validate_steps(steps: Sequence[Step]) -> None:
    """校验步骤列表：名称非空且唯一"""
    seen: set[str] = set()
    dupes: list[str] = []
    for step in steps:
        if not step.name:
            raise ValidationError("步骤名称不能为空")
        if step.name in seen:
            dupes.append(step.name)
        seen.add(step.name)
    if dupes:
        raise ValidationError(f"步骤名称重复: {', '.join(dupes)}", details=dupes)


class StepRunner:
    """顺序步骤执行器"""

    def __init__(self, ctx: ProvisionContext) -> None:
        self.ctx = ctx

    def run(self, steps: Sequence[Step], run: ProvisionRun) -> RunReport:
        """执行全部步骤，结果写入 run.report

        遇到必需步骤失败时调用 run.abort() 并停止；收尾（清理）由调用方的
        `with ProvisionRun()` 作用域负责。
        """
        validate_steps(steps)
        self.ctx.run = run
        total = len(steps)
        for index, step in enumerate(steps, 1):
            result = self.run_step(step, index=index, total=total)
            run.record(result)
            if result.failed:
                run.abort(result.returncode, result.message, step=step.name)
                break
        else:
            run.succeed()
        return run.report

    def run_step(self, step: Step, *, index: int = 0, total: int = 0) -> StepResult:
        ctx = self.ctx.for_step(step)
        label = f"[{index}/{total}] {step.name}" if total else step.name
        start = time.monotonic()

        if self._precondition_met(step, ctx, label):
            logger.info("%s 已满足，跳过", label)
            return StepResult(name=step.name, status=StepStatus.SKIPPED)

        logger.info("%s 开始%s", label, f": {step.description}" if step.description else "")
        try:
            step.action(ctx)
            if not self._postcondition_holds(step, ctx, label):
                raise PostconditionError("后置条件不满足")
        except RunInterrupted:
            raise
        except _STEP_ERRORS as e:
            returncode = getattr(e, "returncode", 1) if isinstance(e, ProvisionError) else 1
            return self._failure(step, label, returncode, str(e), time.monotonic() - start)

        duration = time.monotonic() - start
        if ctx.warnings:
            logger.warning("%s 完成，有 %d 条告警 (%.1fs)", label, len(ctx.warnings), duration)
            return StepResult(
                name=step.name, status=StepStatus.WARNED,
                duration=duration, warnings=list(ctx.warnings),
            )
        logger.info("%s 完成 (%.1fs)", label, duration)
        return StepResult(name=step.name, status=StepStatus.SUCCEEDED, duration=duration)

    def _failure(
        self, step: Step, label: str, returncode: int, message: str,
        duration: float,
    ) -> StepResult:
        if step.required:
            logger.error("%s 失败 (rc=%d): %s", label, returncode, message)
            return StepResult(
                name=step.name, status=StepStatus.FAILED,
                returncode=returncode, message=message, duration=duration,
            )
        logger.warning("%s 可选步骤失败 (rc=%d)，继续: %s", label, returncode, message)
        return StepResult(
            name=step.name, status=StepStatus.WARNED,
            returncode=returncode, message=message, duration=duration,
            warnings=[message],
        )

    @staticmethod
    def _precondition_met(step: Step, ctx: ProvisionContext, label: str) -> bool:
        if step.precondition is None:
            return False
        try:
            return bool(step.precondition(ctx))
        except RunInterrupted:
            raise
        except _STEP_ERRORS as e:
            logger.warning("%s 前置条件无法判定，按未满足处理: %s", label, e)
            return False

    @staticmethod
    def _postcondition_holds(step: Step, ctx: ProvisionContext, label: str) -> bool:
        if step.postcondition is None:
            return True
        try:
            return bool(step.postcondition(ctx))
        except RunInterrupted:
            raise
        except _STEP_ERRORS as e:
            logger.warning("%s 后置条件检查出错: %s", label, e)
            return False
