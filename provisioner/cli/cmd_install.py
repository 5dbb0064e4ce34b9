"""CLI - 部署命令"""

from __future__ import annotations

import sys

import click

from provisioner.cli import _load, _log_options
from provisioner.core.config import DEFAULT_CONFIG_PATH
from provisioner.core.exceptions import ConcurrentRunError, PreflightError, ValidationError
from provisioner.core.preflight import Preflight
from provisioner.services.provisioner import Provisioner
from provisioner.services.recipe import build_steps, select_steps
from provisioner.utils.logger import setup_logging


def register(group: click.Group) -> None:
    group.add_command(install)


@click.command()
@click.option("--config", "-c", default=DEFAULT_CONFIG_PATH, help="配置文件路径")
@click.option("--log-file", default=None, help="持久日志文件（覆盖配置）")
@click.option("--skip-preflight", is_flag=True, help="跳过 root/网络/磁盘 前置检查")
@click.option("--clean", is_flag=True, help="结束后删除源码/构建/暂存目录")
@click.option("--only", multiple=True, help="只执行匹配的步骤，支持通配（可多次指定）")
def install(
    config: str, log_file: str | None, skip_preflight: bool,
    clean: bool, only: tuple[str, ...],
) -> None:
    """按顺序执行全部部署步骤（可安全重复运行）"""
    cfg = _load(config).with_overrides(log_file=log_file, clean_work_dirs=clean or None)
    setup_logging(log_file=cfg.log_file, **_log_options())

    try:
        steps = select_steps(build_steps(cfg), only)
    except ValidationError as e:
        raise click.BadParameter(str(e), param_hint="--only") from e

    if not skip_preflight:
        try:
            Preflight(cfg).verify()
        except PreflightError as e:
            click.echo(f"错误: {e}", err=True)
            sys.exit(e.returncode)

    try:
        report = Provisioner(cfg).run(steps)
    except ConcurrentRunError as e:
        click.echo(f"错误: {e}", err=True)
        sys.exit(e.returncode)

    sys.exit(report.exit_status)
