"""CLI - 查看类命令：plan / check / config"""

from __future__ import annotations

import sys

import click

from provisioner.cli import _load
from provisioner.core.config import DEFAULT_CONFIG_PATH


def register(group: click.Group) -> None:
    group.add_command(plan)
    group.add_command(check)
    group.add_command(config_cmd)


@click.command()
@click.option("--config", "-c", default=DEFAULT_CONFIG_PATH, help="配置文件路径")
@click.option("--only", multiple=True, help="只列出匹配的步骤，支持通配")
def plan(config: str, only: tuple[str, ...]) -> None:
    """列出将要执行的步骤（不执行任何命令）"""
    from provisioner.core.exceptions import ValidationError
    from provisioner.services.recipe import build_steps, select_steps

    cfg = _load(config)
    try:
        steps = select_steps(build_steps(cfg), only)
    except ValidationError as e:
        raise click.BadParameter(str(e), param_hint="--only") from e

    width = max(len(s.name) for s in steps)
    for i, s in enumerate(steps, 1):
        flag = "" if s.required else " (可选)"
        click.echo(f"{i:3d}. {s.name:<{width}}  {s.description}{flag}")


@click.command()
@click.option("--config", "-c", default=DEFAULT_CONFIG_PATH, help="配置文件路径")
def check(config: str) -> None:
    """执行前置检查：root 权限、网络可达、磁盘空间"""
    from provisioner.core.preflight import Preflight

    cfg = _load(config)
    results = Preflight(cfg).run_checks()
    for r in results:
        mark = click.style("OK  ", fg="green") if r.passed else click.style("FAIL", fg="red")
        click.echo(f"[{mark}] {r.name}: {r.detail}")
    if not all(r.passed for r in results):
        sys.exit(1)


@click.command(name="config")
@click.option("--config", "-c", default=DEFAULT_CONFIG_PATH, help="配置文件路径")
def config_cmd(config: str) -> None:
    """打印合并环境变量后的生效配置"""
    from provisioner.utils.yaml_io import dump_yaml

    click.echo(dump_yaml(_load(config).to_dict()), nl=False)
