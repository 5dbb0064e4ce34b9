"""systemd 单元定义与服务启动

单元内容以声明式 UnitSpec 描述（入口进程、重启策略、依赖顺序、运行身份），
渲染成 unit 文件文本后写入 systemd 目录。已安装文本与渲染结果一致时跳过。
"""

from __future__ import annotations

import logging
import shlex
import socket
from dataclasses import dataclass
from pathlib import Path

from provisioner.core.config import Config
from provisioner.core.context import ProvisionContext
from provisioner.core.models import Severity, Step
from provisioner.services.system import unit_active, unit_enabled
from provisioner.utils.yaml_io import atomic_write

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnitSpec:
    """一个 systemd service 单元"""

    name: str
    description: str
    exec_start: tuple[str, ...]
    documentation: str = ""
    after: tuple[str, ...] = ()
    wants: tuple[str, ...] = ()
    user: str = ""
    group: str = ""
    runtime_directory: str = ""
    pid_file: str = ""
    restart: str = "always"
    restart_sec: int | None = None
    timeout_stop_sec: int | None = None
    success_exit_status: str = ""
    recovery_guard: bool = True
    alias: str = ""

    @property
    def filename(self) -> str:
        return f"{self.name}.service"

    def render(self) -> str:
        unit = [f"Description={self.description}"]
        if self.documentation:
            unit.append(f"Documentation={self.documentation}")
        if self.after:
            unit.append(f"After={' '.join(self.after)}")
        if self.wants:
            unit.append(f"Wants={' '.join(self.wants)}")
        if self.recovery_guard:
            unit.append("ConditionKernelCommandLine=!recovery")

        service = ["Type=exec"]
        if self.user:
            service.append(f"User={self.user}")
        if self.group:
            service.append(f"Group={self.group}")
        if self.runtime_directory:
            service.append(f"RuntimeDirectory={self.runtime_directory}")
            service.append("RuntimeDirectoryMode=2775")
        if self.pid_file:
            service.append(f"PIDFile={self.pid_file}")
        service.append(f"ExecStart={shlex.join(self.exec_start)}")
        if self.success_exit_status:
            service.append(f"SuccessExitStatus={self.success_exit_status}")
        service.append(f"Restart={self.restart}")
        if self.restart_sec is not None:
            service.append(f"RestartSec={self.restart_sec}")
        if self.timeout_stop_sec is not None:
            service.append(f"TimeoutStopSec={self.timeout_stop_sec}")

        install = ["WantedBy=multi-user.target"]
        if self.alias:
            install.append(f"Alias={self.alias}")

        sections = [("Unit", unit), ("Service", service), ("Install", install)]
        return "\n\n".join(
            "\n".join([f"[{title}]", *lines]) for title, lines in sections
        ) + "\n"


def greenbone_units(cfg: Config) -> list[UnitSpec]:
    """按启动顺序排列：notus-scanner → ospd-openvas → gvmd → gsad"""
    user = cfg.service_user
    binp, sbin = cfg.bin, cfg.sbin
    return [
        UnitSpec(
            name="notus-scanner",
            description="Notus Scanner",
            documentation="https://github.com/greenbone/notus-scanner",
            after=("mosquitto.service",),
            wants=("mosquitto.service",),
            user=user,
            runtime_directory="notus-scanner",
            pid_file="/run/notus-scanner/notus-scanner.pid",
            exec_start=(
                str(binp / "notus-scanner"), "--foreground",
                "--products-directory", "/var/lib/notus/products",
                "--log-file", "/var/log/gvm/notus-scanner.log",
            ),
            success_exit_status="SIGKILL",
            restart_sec=60,
        ),
        UnitSpec(
            name="ospd-openvas",
            description="OSPd Wrapper for the OpenVAS Scanner (ospd-openvas)",
            documentation="man:ospd-openvas(8) man:openvas(8)",
            after=(
                "network.target", "networking.service",
                "redis-server@openvas.service", "mosquitto.service",
            ),
            wants=(
                "redis-server@openvas.service", "mosquitto.service",
                "notus-scanner.service",
            ),
            user=user, group=user,
            runtime_directory="ospd",
            pid_file="/run/ospd/ospd-openvas.pid",
            exec_start=(
                str(binp / "ospd-openvas"), "--foreground",
                "--unix-socket", "/run/ospd/ospd-openvas.sock",
                "--pid-file", "/run/ospd/ospd-openvas.pid",
                "--log-file", "/var/log/gvm/ospd-openvas.log",
                "--lock-file-dir", "/var/lib/openvas",
                "--socket-mode", "0o770",
                "--mqtt-broker-address", cfg.mqtt_broker,
                "--mqtt-broker-port", str(cfg.mqtt_port),
                "--notus-feed-dir", "/var/lib/notus/advisories",
            ),
            success_exit_status="SIGKILL",
            restart_sec=60,
        ),
        UnitSpec(
            name="gvmd",
            description="Greenbone Vulnerability Manager daemon (gvmd)",
            documentation="man:gvmd(8)",
            after=(
                "network.target", "networking.service",
                "postgresql.service", "ospd-openvas.service",
            ),
            wants=("postgresql.service", "ospd-openvas.service"),
            user=user, group=user,
            pid_file="/run/gvmd/gvmd.pid",
            runtime_directory="gvmd",
            exec_start=(
                str(sbin / "gvmd"), "--foreground",
                "--osp-vt-update=/run/ospd/ospd-openvas.sock",
                f"--listen-group={user}",
            ),
            timeout_stop_sec=10,
        ),
        UnitSpec(
            name="gsad",
            description="Greenbone Security Assistant daemon (gsad)",
            documentation="man:gsad(8) https://www.greenbone.net",
            after=("network.target", "gvmd.service"),
            wants=("gvmd.service",),
            user=user, group=user,
            runtime_directory="gsad",
            pid_file="/run/gsad/gsad.pid",
            exec_start=(
                str(sbin / "gsad"), "--foreground",
                f"--listen={cfg.gsad_listen}", f"--port={cfg.gsad_port}",
                "--http-only",
            ),
            timeout_stop_sec=10,
            recovery_guard=False,
            alias="greenbone-security-assistant.service",
        ),
    ]


def unit_path(cfg: Config, unit: UnitSpec) -> Path:
    return Path(cfg.systemd_dir) / unit.filename


def units_current(ctx: ProvisionContext) -> bool:
    for unit in greenbone_units(ctx.config):
        path = unit_path(ctx.config, unit)
        if not path.exists() or path.read_text(encoding="utf-8") != unit.render():
            return False
    return True


def units_step(config: Config) -> Step:
    def install(ctx: ProvisionContext) -> None:
        for unit in greenbone_units(ctx.config):
            path = unit_path(ctx.config, unit)
            ctx.commands.apply(f"写入 {path}", atomic_write, path, unit.render(), mode=0o644)
        ctx.commands.run(["systemctl", "daemon-reload"])

    return Step(
        name="systemd-units",
        action=install,
        precondition=units_current,
        postcondition=units_current,
        description="安装 systemd 单元文件",
    )


def feed_sync_step(config: Config) -> Step:
    def sync(ctx: ProvisionContext) -> None:
        ctx.commands.run([str(ctx.config.bin / "greenbone-feed-sync")])

    return Step(
        name="feed-sync",
        action=sync,
        severity=Severity.OPTIONAL,
        description="同步 Greenbone 社区 Feed（耗时较长，请勿中断）",
    )


def web_ui_url(cfg: Config) -> str:
    host = cfg.gsad_listen
    if host in ("0.0.0.0", "::", ""):
        host = socket.getfqdn()
    return f"http://{host}:{cfg.gsad_port}"


def service_step(unit: UnitSpec) -> Step:
    name = unit.filename

    def running(ctx: ProvisionContext) -> bool:
        return unit_enabled(ctx, name) and unit_active(ctx, name)

    def start(ctx: ProvisionContext) -> None:
        ctx.commands.run(["systemctl", "enable", name])
        ctx.commands.run(["systemctl", "start", name])

    return Step(
        name=f"service:{unit.name}",
        action=start,
        precondition=running,
        postcondition=lambda ctx: unit_active(ctx, name),
        description=f"启用并启动 {name}",
    )


def service_steps(config: Config) -> list[Step]:
    return [service_step(unit) for unit in greenbone_units(config)]
