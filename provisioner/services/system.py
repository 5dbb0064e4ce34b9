"""系统层配置步骤

服务账户、工作目录、签名密钥、Redis、Mosquitto、目录权限、Feed 校验密钥环、
sudo 规则、动态库缓存。每个步骤尽量带前置条件，使重复运行成为空操作。
"""

from __future__ import annotations

import logging
import os
import stat
from pathlib import Path

from provisioner.core.config import Config
from provisioner.core.context import ProvisionContext
from provisioner.core.models import Step
from provisioner.services import files
from provisioner.services.components import download, find_component
from provisioner.utils.yaml_io import atomic_write

logger = logging.getLogger(__name__)

GVM_STATE_DIRS = ("/var/lib/gvm", "/var/lib/openvas", "/var/lib/notus", "/var/log/gvm")
GROUP_WRITABLE_DIRS = ("/var/lib/gvm", "/var/lib/openvas", "/var/log/gvm")
REDIS_SOCKET_LINE = "db_address = /run/redis-openvas/redis.sock"
REDIS_UNIT = "redis-server@openvas.service"


def unit_active(ctx: ProvisionContext, unit: str) -> bool:
    return ctx.commands.probe(["systemctl", "is-active", "--quiet", unit]).success


def unit_enabled(ctx: ProvisionContext, unit: str) -> bool:
    return ctx.commands.probe(["systemctl", "is-enabled", "--quiet", unit]).success


def user_exists(ctx: ProvisionContext, user: str) -> bool:
    return ctx.commands.probe(["getent", "passwd", user]).success


def in_group(ctx: ProvisionContext, user: str, group: str) -> bool:
    result = ctx.commands.probe(["id", "-nG", user])
    return result.success and group in result.stdout.split()


# =========================================================================
# 账户与目录
# =========================================================================

def service_account_step(config: Config) -> Step:
    user = config.service_user

    def create(ctx: ProvisionContext) -> None:
        ctx.commands.run([
            "useradd", "-r", "-M", "-U", "-G", "sudo",
            "-s", "/usr/sbin/nologin", user,
        ])
        invoker = ctx.config.invoking_user
        if invoker and invoker != "root":
            ctx.commands.run(["usermod", "-aG", user, invoker])

    return Step(
        name="service-account",
        action=create,
        precondition=lambda ctx: user_exists(ctx, user),
        postcondition=lambda ctx: user_exists(ctx, user),
        description=f"创建受限服务账户 {user}",
    )


def work_dirs_step(config: Config) -> Step:
    def wanted(cfg: Config) -> list[Path]:
        return [*cfg.work_dirs, Path(cfg.state_dir) / "stamps"]

    def create(ctx: ProvisionContext) -> None:
        for d in wanted(ctx.config):
            ctx.commands.apply(f"创建目录 {d}", files.make_dirs, d)

    def exist(ctx: ProvisionContext) -> bool:
        return all(d.is_dir() for d in wanted(ctx.config))

    return Step(
        name="work-dirs", action=create, precondition=exist, postcondition=exist,
        description="创建源码/构建/暂存/状态目录",
    )


# =========================================================================
# 签名密钥
# =========================================================================

def signing_key_known(ctx: ProvisionContext) -> bool:
    return ctx.commands.probe(
        ["gpg", "--list-keys", ctx.config.signing_key_fingerprint],
    ).success


def signing_key_step(config: Config) -> Step:
    def import_key(ctx: ProvisionContext) -> None:
        cfg = ctx.config
        key_file = Path(cfg.signing_key_file)
        ctx.commands.apply(
            f"创建密钥环目录 {cfg.gnupg_home}", files.make_dirs, cfg.gnupg_home, mode=0o700,
        )
        download(ctx, cfg.signing_key_url, key_file)
        ctx.commands.run(["gpg", "--import", str(key_file)])
        ctx.commands.run(
            ["gpg", "--import-ownertrust"],
            input=f"{cfg.signing_key_fingerprint}:6:\n",
        )

    return Step(
        name="signing-key",
        action=import_key,
        precondition=signing_key_known,
        postcondition=signing_key_known,
        description="导入 Greenbone 社区签名密钥",
    )


def feed_keyring_step(config: Config) -> Step:
    def pubring(cfg: Config) -> Path:
        return Path(cfg.openvas_gnupg_home) / "pubring.kbx"

    def install(ctx: ProvisionContext) -> None:
        cfg = ctx.config
        dest = cfg.openvas_gnupg_home
        ctx.commands.apply(f"创建目录 {dest}", files.make_dirs, dest, mode=0o700)
        ctx.commands.run(["cp", "-a", f"{cfg.gnupg_home}/.", dest])
        ctx.commands.run(["chown", "-R", f"{cfg.service_user}:{cfg.service_user}", dest])

    return Step(
        name="feed-keyring",
        action=install,
        precondition=lambda ctx: pubring(ctx.config).exists(),
        postcondition=lambda ctx: pubring(ctx.config).exists(),
        description="安装 Feed 校验密钥环",
    )


# =========================================================================
# Redis / Mosquitto
# =========================================================================

def redis_step(config: Config) -> Step:
    def conf_path(cfg: Config) -> Path:
        return Path(cfg.redis_conf_dir) / "redis-openvas.conf"

    def configured(ctx: ProvisionContext) -> bool:
        cfg = ctx.config
        return (
            conf_path(cfg).exists()
            and files.has_lines(cfg.openvas_conf, [REDIS_SOCKET_LINE])
            and unit_active(ctx, REDIS_UNIT)
            and in_group(ctx, cfg.service_user, "redis")
        )

    def configure(ctx: ProvisionContext) -> None:
        cfg = ctx.config
        scanner = find_component(cfg, "openvas-scanner")
        src = scanner.source_tree(cfg) / "config" / "redis-openvas.conf"
        ctx.commands.run(["cp", str(src), f"{cfg.redis_conf_dir}/"])
        ctx.commands.run(["chown", "redis:redis", str(conf_path(cfg))])
        ctx.commands.apply(
            f"写入 {cfg.openvas_conf}: db_address",
            files.ensure_lines, cfg.openvas_conf, [REDIS_SOCKET_LINE],
        )
        ctx.commands.run(["systemctl", "start", REDIS_UNIT])
        ctx.commands.run(["systemctl", "enable", REDIS_UNIT])
        ctx.commands.run(["usermod", "-aG", "redis", cfg.service_user])

    return Step(
        name="redis", action=configure,
        precondition=configured, postcondition=configured,
        description="配置 OpenVAS 专用 Redis 实例",
    )


def mqtt_lines(cfg: Config) -> list[str]:
    return [f"mqtt_server_uri = {cfg.mqtt_broker}:{cfg.mqtt_port}", "table_driven_lsc = yes"]


def mosquitto_step(config: Config) -> Step:
    def configured(ctx: ProvisionContext) -> bool:
        return (
            unit_active(ctx, "mosquitto.service")
            and files.has_lines(ctx.config.openvas_conf, mqtt_lines(ctx.config))
        )

    def configure(ctx: ProvisionContext) -> None:
        ctx.commands.run(["systemctl", "start", "mosquitto.service"])
        ctx.commands.run(["systemctl", "enable", "mosquitto.service"])
        ctx.commands.apply(
            f"写入 {ctx.config.openvas_conf}: mqtt",
            files.ensure_lines, ctx.config.openvas_conf, mqtt_lines(ctx.config),
        )

    return Step(
        name="mosquitto", action=configure,
        precondition=configured, postcondition=configured,
        description="配置 MQTT 代理",
    )


# =========================================================================
# 权限
# =========================================================================

def gvmd_setid(cfg: Config) -> bool:
    gvmd = cfg.sbin / "gvmd"
    if not gvmd.exists():
        return False
    mode = os.stat(gvmd).st_mode
    return bool(mode & stat.S_ISUID) and bool(mode & stat.S_ISGID)


def permissions_step(config: Config) -> Step:
    def adjust(ctx: ProvisionContext) -> None:
        cfg = ctx.config
        owner = f"{cfg.service_user}:{cfg.service_user}"
        dirs = [*GVM_STATE_DIRS, "/run/gvmd"]
        ctx.commands.apply("创建状态/日志目录", files.make_dirs, *dirs)
        for d in dirs:
            ctx.commands.run(["chown", "-R", owner, d])
        for d in GROUP_WRITABLE_DIRS:
            ctx.commands.run(["chmod", "-R", "g+srw", d])
        gvmd = str(cfg.sbin / "gvmd")
        ctx.commands.run(["chown", owner, gvmd])
        ctx.commands.run(["chmod", "6750", gvmd])

    return Step(
        name="permissions", action=adjust,
        postcondition=lambda ctx: gvmd_setid(ctx.config),
        description="调整目录属主与 gvmd 权限",
    )


# =========================================================================
# sudo / ldconfig
# =========================================================================

def sudo_rule(cfg: Config) -> str:
    return f"%{cfg.service_user} ALL = NOPASSWD: {cfg.sbin / 'openvas'}"


def sudo_configured(ctx: ProvisionContext) -> bool:
    rule = sudo_rule(ctx.config)
    return (
        files.has_lines(ctx.config.sudoers_file, [rule])
        or files.has_lines("/etc/sudoers", [rule])
    )


def sudoers_step(config: Config) -> Step:
    def configure(ctx: ProvisionContext) -> None:
        cfg = ctx.config
        draft = Path(cfg.build_dir) / "sudoers-gvm"
        content = (
            f"# allow users of the {cfg.service_user} group run openvas\n"
            f"{sudo_rule(cfg)}\n"
        )
        ctx.commands.apply(f"生成 sudoers 草稿 {draft}", atomic_write, draft, content, mode=0o440)
        ctx.commands.run(["visudo", "-cf", str(draft)])
        ctx.commands.run([
            "install", "-m", "0440", "-o", "root", "-g", "root",
            str(draft), cfg.sudoers_file,
        ])

    return Step(
        name="sudoers", action=configure,
        precondition=sudo_configured, postcondition=sudo_configured,
        description="允许服务组以 root 运行 openvas 扫描器",
    )


def ldconfig_step(config: Config) -> Step:
    def refresh(ctx: ProvisionContext) -> None:
        ctx.commands.run(["ldconfig"])

    return Step(name="ldconfig", action=refresh, description="刷新动态库缓存")
