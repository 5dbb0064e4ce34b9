"""Greenbone 社区版部署清单

把各领域步骤按依赖顺序拼成一个有序列表。执行顺序：
  软件包 → 账户/目录/密钥 → 组件构建安装 → Redis/MQTT → 权限/密钥环/sudo
  → PostgreSQL → ldconfig → 管理员 → Feed 属主 → systemd 单元 → Feed 同步 → 启动服务
"""

from __future__ import annotations

import fnmatch
import logging
from collections.abc import Callable, Iterable

from provisioner.core.config import Config
from provisioner.core.context import ProvisionContext
from provisioner.core.exceptions import ValidationError
from provisioner.core.models import RunReport, Step, StepStatus
from provisioner.services import files
from provisioner.services.components import component_steps
from provisioner.services.credentials import admin_user_step, feed_import_owner_step
from provisioner.services.database import database_steps
from provisioner.services.packages import package_steps
from provisioner.services.system import (
    feed_keyring_step,
    ldconfig_step,
    mosquitto_step,
    permissions_step,
    redis_step,
    service_account_step,
    signing_key_step,
    sudoers_step,
    work_dirs_step,
)
from provisioner.services.systemd import (
    feed_sync_step,
    service_steps,
    units_step,
    web_ui_url,
)

logger = logging.getLogger(__name__)


def build_steps(config: Config) -> list[Step]:
    """构造完整的有序步骤列表"""
    return [
        *package_steps(config),
        service_account_step(config),
        work_dirs_step(config),
        signing_key_step(config),
        *component_steps(config),
        redis_step(config),
        mosquitto_step(config),
        permissions_step(config),
        feed_keyring_step(config),
        sudoers_step(config),
        *database_steps(config),
        ldconfig_step(config),
        admin_user_step(config),
        feed_import_owner_step(config),
        units_step(config),
        feed_sync_step(config),
        *service_steps(config),
    ]


def select_steps(steps: list[Step], patterns: Iterable[str]) -> list[Step]:
    """按名称通配过滤（如 'install:*'），保持原有顺序"""
    patterns = list(patterns)
    if not patterns:
        return steps
    selected = [s for s in steps if any(fnmatch.fnmatchcase(s.name, p) for p in patterns)]
    if not selected:
        raise ValidationError(f"没有匹配的步骤: {', '.join(patterns)}")
    return selected


# =========================================================================
# 收尾
# =========================================================================

def render_summary(ctx: ProvisionContext) -> list[str]:
    """运行结束时展示的访问信息（仅在有凭据时生成）"""
    if not ctx.disclosures:
        return []
    lines = ["", "=== Greenbone 部署信息 ==="]
    lines.append(f"  Web 界面: {web_ui_url(ctx.config)}")
    for label, value in ctx.disclosures.items():
        lines.append(f"  {label}: {value}")
    lines.append("请立即保存密码，此信息不会再次显示。")
    return lines


def render_counts(report: RunReport) -> list[str]:
    """步骤统计，附带每个告警步骤的告警内容"""
    warned = [r for r in report.results if r.status == StepStatus.WARNED]
    lines = [
        f"步骤: 完成 {report.count(StepStatus.SUCCEEDED)}  "
        f"跳过 {report.count(StepStatus.SKIPPED)}  "
        f"告警 {len(warned)}  失败 {report.count(StepStatus.FAILED)}",
    ]
    lines.extend(f"  [WARN] {r.name}: {'; '.join(r.warnings)}" for r in warned)
    return lines


def register_cleanups(ctx: ProvisionContext, echo: Callable[[str], None]) -> None:
    """登记运行级清理回调与收尾输出

    清理回调按登记顺序执行；收尾输出（步骤统计 + 一次性凭据展示）在全部
    清理之后，作为操作员看到的最后内容。
    """
    cfg = ctx.config

    def show(report: RunReport) -> None:
        for line in [*render_counts(report), *render_summary(ctx)]:
            echo(line)

    def remove(path: str) -> Callable[[], None]:
        def _remove() -> None:
            if files.remove_path(path):
                logger.info("已清理: %s", path)
        return _remove

    ctx.add_cleanup("删除下载的签名密钥", remove(cfg.signing_key_file))
    if cfg.clean_work_dirs:
        # 临时密钥环用于校验源码包签名，与工作目录一起保留或一起删除
        for d in [*cfg.work_dirs, cfg.gnupg_home]:
            ctx.add_cleanup(f"删除工作目录 {d}", remove(str(d)))
    ctx.on_close(show)
