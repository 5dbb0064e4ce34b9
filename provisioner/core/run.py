"""运行生命周期与清理协议

状态机:
    RUNNING → SUCCEEDED  全部步骤处理完且没有必需步骤失败
    RUNNING → ABORTED    必需步骤失败，或收到 SIGINT / SIGTERM
    SUCCEEDED / ABORTED → FINALIZED  清理回调按注册顺序各执行恰好一次

用法:
    with ProvisionRun() as run:
        run.add_cleanup("删除临时密钥", remove_key)
        StepRunner(ctx).run(steps, run)
    sys.exit(run.exit_status)

清理回调失败只记 WARNING，不影响已确定的退出码；清理期间到达的信号被忽略，
不会重入终止流程。

收尾输出顺序（操作员看到的最后几行）:
    成功: 运行完成记录 → 收尾输出（步骤统计、一次性凭据展示）
    中止: 收尾输出 → 运行中止记录（失败步骤与退出码）
"""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Callable
from types import FrameType, TracebackType

from provisioner.core.exceptions import RunInterrupted
from provisioner.core.models import RunReport, RunState, StepResult, StepStatus

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ProvisionRun:
    """一次完整运行：收集步骤结果、登记清理回调、保证恰好一次收尾"""

    def __init__(self, *, handle_signals: bool = True) -> None:
        self.report = RunReport()
        self._cleanups: list[tuple[str, Callable[[], object]]] = []
        self._closers: list[Callable[[RunReport], object]] = []
        self._finalizing = False
        self._handle_signals = handle_signals
        self._saved_handlers: dict[int, object] = {}

    # ---- 状态 ----

    @property
    def state(self) -> RunState:
        return self.report.state

    @property
    def exit_status(self) -> int:
        return self.report.exit_status

    def record(self, result: StepResult) -> None:
        self.report.results.append(result)

    def succeed(self) -> None:
        if self.report.state == RunState.RUNNING:
            self.report.state = RunState.SUCCEEDED

    def abort(self, status: int, reason: str, *, step: str = "") -> None:
        """进入 ABORTED；只有第一次中止生效"""
        if self.report.state != RunState.RUNNING:
            return
        self.report.state = RunState.ABORTED
        self.report.exit_status = status or 1
        self.report.failed_step = step
        self.report.reason = reason

    # ---- 清理 ----

    def add_cleanup(self, name: str, func: Callable[[], object]) -> None:
        """登记清理回调，收尾时按登记顺序执行"""
        if self.report.state == RunState.FINALIZED:
            logger.warning("运行已收尾，忽略清理回调: %s", name)
            return
        self._cleanups.append((name, func))

    def on_close(self, func: Callable[[RunReport], object]) -> None:
        """登记收尾输出，在全部清理回调之后调用，参数为最终报告"""
        self._closers.append(func)

    def finalize(self) -> None:
        """执行全部清理回调，进入 FINALIZED（重复调用无效）

        整个收尾期间信号被忽略，信号处理器在退出收尾状态前恢复。
        """
        if self.report.state == RunState.FINALIZED or self._finalizing:
            return
        if self.report.state == RunState.RUNNING:
            self.abort(1, "运行未正常结束")
        self._finalizing = True
        try:
            for name, func in self._cleanups:
                self._call(f"清理失败: {name}", func)
            outcome = self.report.state
            self.report.state = RunState.FINALIZED
            if outcome == RunState.ABORTED:
                self._close()
                self._log_outcome(outcome)
            else:
                self._log_outcome(outcome)
                self._close()
        finally:
            self.report.state = RunState.FINALIZED
            self._restore_signal_handlers()
            self._finalizing = False

    def _close(self) -> None:
        for func in self._closers:
            self._call("收尾输出失败", func, self.report)

    @staticmethod
    def _call(what: str, func: Callable[..., object], *args: object) -> None:
        try:
            func(*args)
        except Exception as e:  # 单个回调失败不影响其余回调
            logger.warning("%s (%s: %s)", what, type(e).__name__, e)

    def _log_outcome(self, outcome: RunState) -> None:
        r = self.report
        if outcome == RunState.ABORTED:
            where = f"步骤 {r.failed_step} " if r.failed_step else ""
            logger.error(
                "运行中止: %s%s，退出码 %d", where, r.reason, r.exit_status,
            )
        else:
            logger.info(
                "运行完成: %d 个步骤 (跳过 %d)，退出码 %d",
                len(r.results), r.count(StepStatus.SKIPPED), r.exit_status,
            )

    # ---- 信号 ----

    def _on_signal(self, signum: int, frame: FrameType | None) -> None:
        if self._finalizing:
            logger.warning("清理过程中收到信号 %d，忽略", signum)
            return
        raise RunInterrupted(signum)

    def _install_signal_handlers(self) -> None:
        if not self._handle_signals:
            return
        if threading.current_thread() is not threading.main_thread():
            return
        for sig in HANDLED_SIGNALS:
            self._saved_handlers[sig] = signal.signal(sig, self._on_signal)

    def _restore_signal_handlers(self) -> None:
        for sig, handler in self._saved_handlers.items():
            signal.signal(sig, handler)  # type: ignore[arg-type]
        self._saved_handlers.clear()

    # ---- 作用域 ----

    def __enter__(self) -> ProvisionRun:
        self._install_signal_handlers()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        suppress = False
        if isinstance(exc, RunInterrupted):
            self.abort(exc.returncode, str(exc))
            suppress = True
        elif isinstance(exc, KeyboardInterrupt):
            self.abort(128 + signal.SIGINT, "操作员中断")
            suppress = True
        elif exc is not None:
            self.abort(getattr(exc, "returncode", 1), f"未预期异常: {exc}")
        else:
            self.succeed()
        try:
            self.finalize()
        finally:
            self._restore_signal_handlers()
        return suppress
