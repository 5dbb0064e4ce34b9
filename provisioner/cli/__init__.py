"""gvm-provision 命令行接口

CLI 按职责拆分为子模块，每个模块注册自己的命令到 main group。
"""

import os

import click

from provisioner import __version__
from provisioner.core.config import Config, load_config
from provisioner.core.exceptions import ConfigError
from provisioner.utils.logger import setup_logging

LOG_LEVEL_ENV = "GVM_PROVISION_LOG_LEVEL"
LOG_JSON_ENV = "GVM_PROVISION_LOG_JSON"


def _log_options() -> dict:
    return {
        "level": os.getenv(LOG_LEVEL_ENV, "INFO"),
        "json_output": os.getenv(LOG_JSON_ENV, "") == "1",
    }


def _load(config_path: str) -> Config:
    """加载配置，配置错误转成友好提示"""
    try:
        return load_config(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """gvm-provision - Greenbone 社区版源码部署工具"""
    setup_logging(**_log_options())


# 注册各子命令
from provisioner.cli.cmd_install import register as _reg_install  # noqa: E402
from provisioner.cli.cmd_misc import register as _reg_misc  # noqa: E402

_reg_install(main)
_reg_misc(main)
