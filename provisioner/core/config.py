"""集中配置管理

替代原安装脚本中 export 的全局变量，提供统一的只读配置对象。
加载顺序: 内置默认值 → YAML 文件 → 环境变量覆盖。
对象在运行开始时构造一次，之后通过 ProvisionContext 显式传递，不可修改。
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from provisioner.core.exceptions import ConfigError
from provisioner.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "configs/default.yml"

# 各组件默认版本
DEFAULT_VERSIONS: dict[str, str] = {
    "gvm-libs": "22.10.0",
    "gvmd": "23.8.1",
    "pg-gvm": "22.6.5",
    "gsa": "23.2.1",
    "gsad": "22.11.0",
    "openvas-smb": "22.5.3",
    "openvas-scanner": "23.8.2",
    "ospd-openvas": "22.7.1",
    "notus-scanner": "22.6.3",
}

# 组件版本对应的环境变量名
VERSION_ENV: dict[str, str] = {
    "gvm-libs": "GVM_LIBS_VERSION",
    "gvmd": "GVMD_VERSION",
    "pg-gvm": "PG_GVM_VERSION",
    "gsa": "GSA_VERSION",
    "gsad": "GSAD_VERSION",
    "openvas-smb": "OPENVAS_SMB_VERSION",
    "openvas-scanner": "OPENVAS_SCANNER_VERSION",
    "ospd-openvas": "OSPD_OPENVAS_VERSION",
    "notus-scanner": "NOTUS_VERSION",
}

# 目录布局相关的环境变量 → 字段名
PATH_ENV: dict[str, str] = {
    "INSTALL_PREFIX": "install_prefix",
    "SOURCE_DIR": "source_dir",
    "BUILD_DIR": "build_dir",
    "INSTALL_DIR": "install_dir",
    "GNUPGHOME": "gnupg_home",
    "OPENVAS_GNUPG_HOME": "openvas_gnupg_home",
}

_PATH_FIELDS = (
    "install_prefix", "source_dir", "build_dir", "install_dir", "state_dir",
    "gnupg_home", "openvas_gnupg_home", "log_file", "lock_file",
    "credential_file",
)


@dataclass(frozen=True)
class Config:
    """部署全局配置（只读）"""

    # 目录
    install_prefix: str = "/usr/local"
    source_dir: str = "~/source"
    build_dir: str = "~/build"
    install_dir: str = "~/install"
    state_dir: str = "/var/lib/gvm-provision"
    gnupg_home: str = "/tmp/openvas-gnupg"
    openvas_gnupg_home: str = "/etc/openvas/gnupg"
    log_file: str = "/var/log/gvm-provision.log"
    lock_file: str = "/run/gvm-provision.lock"
    credential_file: str = "/tmp/gvm-admin-credential"
    signing_key_file: str = "/tmp/GBCommunitySigningKey.asc"

    # 系统文件
    systemd_dir: str = "/etc/systemd/system"
    sudoers_file: str = "/etc/sudoers.d/gvm"
    openvas_conf: str = "/etc/openvas/openvas.conf"
    redis_conf_dir: str = "/etc/redis"

    # 账户
    service_user: str = "gvm"
    admin_user: str = "admin"
    invoking_user: str = ""

    # 来源
    download_base: str = "https://github.com/greenbone"
    signing_key_url: str = "https://www.greenbone.net/GBCommunitySigningKey.asc"
    signing_key_fingerprint: str = "8AE4BE429B60A59B311C2E739823FAA60ED1E580"
    versions: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_VERSIONS))
    postgres_version: str = "15"
    db_name: str = "gvmd"

    # 服务
    gsad_listen: str = "0.0.0.0"
    gsad_port: int = 9392
    mqtt_broker: str = "localhost"
    mqtt_port: int = 1883
    feed_import_owner_setting: str = "78eceaec-3385-11ea-b237-28d24461215b"

    # 执行
    build_jobs: int = 0            # 0 表示使用 CPU 核数
    step_timeout: float | None = None
    min_free_disk_gb: int = 20
    clean_work_dirs: bool = False

    # 自定义扩展 (放不到字段里的配置项)
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.service_user:
            raise ConfigError("service_user 不能为空")
        if not self.admin_user:
            raise ConfigError("admin_user 不能为空")
        if not isinstance(self.versions, dict):
            raise ConfigError(f"versions 必须是映射: {self.versions!r}")
        if self.build_jobs < 0:
            raise ConfigError(f"build_jobs 不能为负数: {self.build_jobs}")
        for attr in _PATH_FIELDS:
            value = str(getattr(self, attr))
            if value.startswith("~"):
                object.__setattr__(self, attr, os.path.expanduser(value))

    # ---- 加载 ----

    @classmethod
    def from_file(
        cls, path: str | Path = DEFAULT_CONFIG_PATH,
        environ: Mapping[str, str] | None = None,
    ) -> Config:
        """从 YAML 文件加载配置并叠加环境变量，文件不存在则只用默认值"""
        environ = os.environ if environ is None else environ
        try:
            data = load_yaml(path)
        except (ValueError, yaml.YAMLError) as e:
            raise ConfigError(str(e)) from e
        return cls.from_dict(data, environ)

    @classmethod
    def from_dict(
        cls, data: Mapping[str, Any], environ: Mapping[str, str] | None = None,
    ) -> Config:
        environ = environ or {}
        known = {f.name for f in fields(cls)}
        matched = {k: v for k, v in data.items() if k in known and k != "extra"}
        extra = {k: v for k, v in data.items() if k not in known}

        versions = dict(DEFAULT_VERSIONS)
        file_versions = matched.pop("versions", None) or {}
        if not isinstance(file_versions, dict):
            raise ConfigError(f"versions 必须是映射: {file_versions!r}")
        versions.update({str(k): str(v) for k, v in file_versions.items()})

        for env_name, attr in PATH_ENV.items():
            if environ.get(env_name):
                matched[attr] = environ[env_name]
        for component, env_name in VERSION_ENV.items():
            if environ.get(env_name):
                versions[component] = environ[env_name]
        if environ.get("SUDO_USER") and not matched.get("invoking_user"):
            matched["invoking_user"] = environ["SUDO_USER"]

        try:
            return cls(versions=versions, extra=extra, **matched)
        except TypeError as e:
            raise ConfigError(f"配置项无效: {e}") from e

    def with_overrides(self, **changes: Any) -> Config:
        """返回修改了部分字段的新配置（CLI 参数覆盖用）"""
        changes = {k: v for k, v in changes.items() if v is not None}
        return replace(self, **changes) if changes else self

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    # ---- 派生路径 ----

    def version(self, component: str) -> str:
        try:
            return self.versions[component]
        except KeyError:
            raise ConfigError(f"未配置组件版本: {component}") from None

    @property
    def sbin(self) -> Path:
        return Path(self.install_prefix) / "sbin"

    @property
    def bin(self) -> Path:
        return Path(self.install_prefix) / "bin"

    @property
    def work_dirs(self) -> list[Path]:
        return [Path(self.source_dir), Path(self.build_dir), Path(self.install_dir)]

    @property
    def jobs(self) -> int:
        return self.build_jobs or os.cpu_count() or 1


def load_config(path: str | Path = DEFAULT_CONFIG_PATH) -> Config:
    """从文件加载配置（CLI 入口使用）"""
    cfg = Config.from_file(path)
    logger.debug("配置已加载: %s", path)
    return cfg
