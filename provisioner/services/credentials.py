"""管理员凭据的生成、暂存与一次性展示

gvmd --create-user 生成随机密码并打印到 stdout。密码:
  1. 从输出中解析（解析不到即中止运行，不允许无凭据地继续）
  2. 先登记到运行的展示信息中，中途失败或中断时收尾同样会展示
  3. 以 0600 权限原子写入临时文件，属主为服务账户，作为进程意外终止时的恢复途径
  4. 收尾时删除临时文件，随后在最终输出中展示给操作员一次

命令 stdout 从不写入日志。
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from provisioner.core.config import Config
from provisioner.core.context import ProvisionContext
from provisioner.core.exceptions import CredentialError, PostconditionError
from provisioner.core.models import Step
from provisioner.services import files

logger = logging.getLogger(__name__)

_PASSWORD_RE = re.compile(r"password '([^']+)'")
_UUID = r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"

ADMIN_USER_LABEL = "管理员用户"
ADMIN_PASSWORD_LABEL = "管理员密码"


def gvmd(cfg: Config, *args: str) -> list[str]:
    """以服务账户身份调用 gvmd"""
    return ["runuser", "-u", cfg.service_user, "--", str(cfg.sbin / "gvmd"), *args]


def parse_password(output: str) -> str | None:
    m = _PASSWORD_RE.search(output)
    return m.group(1) if m else None


def parse_user_uuid(output: str, user: str) -> str | None:
    """从 `gvmd --get-users --verbose` 输出中取指定用户的 UUID"""
    pattern = re.compile(rf"^\s*{re.escape(user)}\s+({_UUID})\s*$", re.MULTILINE)
    m = pattern.search(output)
    return m.group(1) if m else None


def admin_exists(ctx: ProvisionContext) -> bool:
    cfg = ctx.config
    result = ctx.commands.probe(gvmd(cfg, "--get-users"))
    return result.success and cfg.admin_user in result.stdout.split()


def admin_user_step(config: Config) -> Step:
    def create(ctx: ProvisionContext) -> None:
        cfg = ctx.config
        result = ctx.commands.run(gvmd(cfg, f"--create-user={cfg.admin_user}"))
        password = parse_password(result.stdout)
        if not password:
            raise CredentialError(f"无法从 gvmd 输出中提取用户 {cfg.admin_user} 的密码")

        secret = Path(cfg.credential_file)
        ctx.disclose(ADMIN_USER_LABEL, cfg.admin_user)
        ctx.disclose(ADMIN_PASSWORD_LABEL, password)
        ctx.add_cleanup("删除凭据文件", lambda: remove_secret(secret))
        ctx.commands.apply(
            f"写入凭据文件 {secret} (0600, 属主 {cfg.service_user})",
            files.write_secret, secret, password, owner=cfg.service_user,
        )

    def captured(ctx: ProvisionContext) -> bool:
        return ADMIN_PASSWORD_LABEL in ctx.disclosures and Path(ctx.config.credential_file).exists()

    return Step(
        name="admin-user",
        action=create,
        precondition=admin_exists,
        postcondition=captured,
        description=f"创建 Web 管理员 {config.admin_user}",
    )


def remove_secret(path: Path) -> None:
    if files.remove_path(path):
        logger.info("已删除凭据文件: %s", path)


def feed_import_owner_step(config: Config) -> Step:
    def assign(ctx: ProvisionContext) -> None:
        cfg = ctx.config
        result = ctx.commands.run(gvmd(cfg, "--get-users", "--verbose"))
        uuid = parse_user_uuid(result.stdout, cfg.admin_user)
        if not uuid:
            raise PostconditionError(f"无法解析用户 {cfg.admin_user} 的 UUID")
        ctx.commands.run(gvmd(
            cfg, "--modify-setting", cfg.feed_import_owner_setting, "--value", uuid,
        ))

    return Step(
        name="feed-import-owner",
        action=assign,
        description="将管理员设为 Feed 导入属主",
    )
