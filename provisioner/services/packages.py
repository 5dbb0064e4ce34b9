"""系统软件包安装步骤

按用途分组安装 apt 包，每组一个步骤。已全部安装的组在重复运行时跳过。
报表相关的 TeX 等大包属于可选组，安装失败只告警。

必需组里可以带少量附加包（extras）：必需包装好而附加包装不上时，
步骤记为"成功但有告警"，不会升级为失败。
"""

from __future__ import annotations

from dataclasses import dataclass

from provisioner.core.config import Config
from provisioner.core.context import ProvisionContext
from provisioner.core.models import Severity, Step

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}
INSTALLED = "install ok installed"


@dataclass(frozen=True)
class PackageGroup:
    """一组 apt 包"""

    name: str
    packages: tuple[str, ...]
    severity: Severity = Severity.REQUIRED
    no_recommends: bool = False
    extras: tuple[str, ...] = ()


def package_groups(config: Config) -> list[PackageGroup]:
    pg = config.postgres_version
    return [
        PackageGroup("build-tools", (
            "build-essential", "curl", "cmake", "pkg-config", "gnupg",
        ), no_recommends=True),
        PackageGroup("gvm-libs", (
            "libcjson-dev", "libcurl4-openssl-dev", "libglib2.0-dev",
            "libgpgme-dev", "libgnutls28-dev", "uuid-dev", "libssh-gcrypt-dev",
            "libhiredis-dev", "libxml2-dev", "libpcap-dev", "libnet1-dev",
            "libpaho-mqtt-dev",
        )),
        PackageGroup("gvmd", (
            "libldap2-dev", "libradcli-dev", "libpq-dev",
            f"postgresql-server-dev-{pg}", "libical-dev", "xsltproc", "rsync",
            "libbsd-dev",
        )),
        PackageGroup("reporting", (
            "texlive-latex-extra", "texlive-fonts-recommended", "xmlstarlet",
            "zip", "rpm", "fakeroot", "dpkg", "nsis", "gpgsm", "wget",
            "sshpass", "openssh-client", "socat", "snmp", "smbclient",
            "python3-lxml", "gnutls-bin", "xml-twig-tools",
        ), severity=Severity.OPTIONAL, no_recommends=True),
        PackageGroup("scanner", (
            "libmicrohttpd-dev", "gcc-mingw-w64", "libpopt-dev",
            "libunistring-dev", "heimdal-dev", "perl-base", "bison",
            "libgcrypt20-dev", "libksba-dev", "libjson-glib-dev",
            "libsnmp-dev",
        ), extras=("nmap",)),
        PackageGroup("python", (
            "python3", "python3-pip", "python3-setuptools", "python3-packaging",
            "python3-wrapt", "python3-cffi", "python3-psutil", "python3-lxml",
            "python3-defusedxml", "python3-paramiko", "python3-redis",
            "python3-gnupg", "python3-paho-mqtt", "python3-venv",
        ), extras=("python3-impacket",)),
        PackageGroup("services", ("redis-server", "mosquitto", "postgresql")),
    ]


def installed(ctx: ProvisionContext, packages: tuple[str, ...]) -> bool:
    """dpkg 数据库中是否已安装全部包"""
    result = ctx.commands.probe(
        ["dpkg-query", "-W", "-f=${Status}\\n", *packages],
    )
    statuses = [line.strip() for line in result.stdout.splitlines() if line.strip()]
    return (
        result.success
        and len(statuses) == len(packages)
        and all(s == INSTALLED for s in statuses)
    )


def _install_command(group: PackageGroup, packages: tuple[str, ...]) -> list[str]:
    cmd = ["apt-get", "install", "--assume-yes"]
    if group.no_recommends:
        cmd.append("--no-install-recommends")
    return [*cmd, *packages]


def package_steps(config: Config) -> list[Step]:
    """apt 索引刷新 + 每组一个安装步骤"""
    groups = package_groups(config)
    required = [g for g in groups if g.severity == Severity.REQUIRED]

    def all_required_installed(ctx: ProvisionContext) -> bool:
        return all(installed(ctx, g.packages) for g in required)

    def update_index(ctx: ProvisionContext) -> None:
        ctx.commands.run(["apt-get", "update"], env=APT_ENV)

    steps = [Step(
        name="packages:index", action=update_index,
        precondition=all_required_installed,
        description="刷新 apt 软件包索引",
    )]
    for group in groups:
        steps.append(_group_step(group))
    return steps


def _group_step(group: PackageGroup) -> Step:
    def is_installed(ctx: ProvisionContext) -> bool:
        return installed(ctx, group.packages)

    def install(ctx: ProvisionContext) -> None:
        ctx.commands.run(_install_command(group, group.packages), env=APT_ENV)
        if not group.extras:
            return
        result = ctx.commands.run(
            _install_command(group, group.extras), env=APT_ENV, check=False,
        )
        if not result.success:
            ctx.warn(f"附加软件包未安装: {' '.join(group.extras)}")

    count = len(group.packages) + len(group.extras)
    return Step(
        name=f"packages:{group.name}",
        action=install,
        precondition=is_installed,
        postcondition=is_installed,
        severity=group.severity,
        description=f"安装 {count} 个软件包",
    )
