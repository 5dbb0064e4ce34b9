"""环境前置检查

在任何变更步骤执行之前运行：root 权限、网络可达、磁盘空间。
任一项不通过即报告并退出，主机保持原样。
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from provisioner.core.config import Config
from provisioner.core.exceptions import PreflightError
from provisioner.utils.net import is_reachable

logger = logging.getLogger(__name__)

GIB = 1024 ** 3


@dataclass
class CheckResult:
    """单项检查结果"""

    name: str
    passed: bool
    detail: str = ""


def _existing_parent(path: Path) -> Path:
    """磁盘检查用：向上找到第一个已存在的目录"""
    for candidate in (path, *path.parents):
        if candidate.exists():
            return candidate
    return Path("/")


class Preflight:
    """前置检查器，检查函数可注入以便测试"""

    def __init__(
        self,
        config: Config,
        *,
        geteuid: Callable[[], int] = os.geteuid,
        reachable: Callable[[str], bool] = is_reachable,
        free_bytes: Callable[[Path], int] | None = None,
    ) -> None:
        self.config = config
        self._geteuid = geteuid
        self._reachable = reachable
        self._free_bytes = free_bytes or (lambda p: shutil.disk_usage(p).free)

    def check_root(self) -> CheckResult:
        uid = self._geteuid()
        return CheckResult("root", uid == 0, f"euid={uid}")

    def check_network(self) -> CheckResult:
        url = self.config.signing_key_url
        return CheckResult("network", self._reachable(url), url)

    def check_disk(self) -> CheckResult:
        target = _existing_parent(Path(self.config.build_dir))
        free = self._free_bytes(target)
        need = self.config.min_free_disk_gb * GIB
        return CheckResult(
            "disk", free >= need,
            f"{target}: 可用 {free / GIB:.1f} GiB，需要 {self.config.min_free_disk_gb} GiB",
        )

    def run_checks(self) -> list[CheckResult]:
        return [self.check_root(), self.check_network(), self.check_disk()]

    def verify(self) -> list[CheckResult]:
        """执行全部检查，有失败项则抛 PreflightError"""
        results = self.run_checks()
        failures: list[str] = []
        for r in results:
            if r.passed:
                logger.info("前置检查通过: %s (%s)", r.name, r.detail)
            else:
                logger.error("前置检查失败: %s (%s)", r.name, r.detail)
                failures.append(r.name)
        if failures:
            raise PreflightError(
                f"前置检查未通过: {', '.join(failures)}", failures=failures,
            )
        return results
