"""上游组件的下载、校验、构建与安装

每个组件两个步骤：
  fetch:<name>    下载源码包和分离签名，gpg 校验通过才算完成
  install:<name>  解压 → 构建 → 安装到暂存根目录 → 复制到线上文件系统 → 写版本戳

安装方式（kind）:
  cmake  cmake 配置 + make + make DESTDIR=<暂存> install
  dist   预构建发行包，直接解压到目标目录（gsa 前端）
  pip    源码包内执行 pip install --root=<暂存>
  pypi   直接从包索引 pip install --root=<暂存>，无 fetch 步骤

版本戳存放在 state_dir，构建目录被清理后重复运行仍能跳过已安装组件。
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from provisioner.core.config import Config
from provisioner.core.context import ProvisionContext
from provisioner.core.exceptions import CommandFailedError, PostconditionError
from provisioner.core.models import Step
from provisioner.services import files
from provisioner.utils.net import validate_url_scheme

CMAKE = "cmake"
DIST = "dist"
PIP = "pip"
PYPI = "pypi"


@dataclass(frozen=True)
class Component:
    """上游组件描述

    archive / signature 是相对 download_base 的 URL 模板，可用 {name} {version}。
    artefact 是安装完成后必然存在的文件，用作后置条件。
    """

    name: str
    kind: str
    artefact: str
    archive: str = "{name}/archive/refs/tags/v{version}.tar.gz"
    signature: str = "{name}/releases/download/v{version}/{name}-v{version}.tar.gz.asc"
    cmake_options: dict[str, str] = field(default_factory=dict)
    package: str = ""  # pypi 包名

    def version(self, config: Config) -> str:
        return config.versions.get(self.name, "")

    def archive_url(self, config: Config) -> str:
        return self._url(config, self.archive)

    def signature_url(self, config: Config) -> str:
        return self._url(config, self.signature)

    def _url(self, config: Config, template: str) -> str:
        path = template.format(name=self.name, version=self.version(config))
        return f"{config.download_base.rstrip('/')}/{path}"

    def archive_path(self, config: Config) -> Path:
        return Path(config.source_dir) / f"{self.name}-{self.version(config)}.tar.gz"

    def signature_path(self, config: Config) -> Path:
        return Path(f"{self.archive_path(config)}.asc")

    def source_tree(self, config: Config) -> Path:
        return Path(config.source_dir) / f"{self.name}-{self.version(config)}"

    def stage_root(self, config: Config) -> Path:
        return Path(config.install_dir) / self.name

    def stamp(self, config: Config) -> Path:
        version = self.version(config) or "latest"
        return Path(config.state_dir) / "stamps" / f"{self.name}-{version}.installed"

    def artefact_path(self, config: Config) -> Path:
        return Path(self.artefact.format(
            prefix=config.install_prefix, pg=config.postgres_version,
        ))


def greenbone_components(config: Config) -> list[Component]:
    """按依赖顺序排列的组件清单"""
    prefix = config.install_prefix
    base = {
        "CMAKE_INSTALL_PREFIX": prefix,
        "CMAKE_BUILD_TYPE": "Release",
    }
    dirs = {"SYSCONFDIR": "/etc", "LOCALSTATEDIR": "/var"}
    return [
        Component(
            "gvm-libs", CMAKE, "{prefix}/include/gvm",
            cmake_options={**base, **dirs},
        ),
        Component(
            "gvmd", CMAKE, "{prefix}/sbin/gvmd",
            signature="{name}/releases/download/v{version}/{name}-{version}.tar.gz.asc",
            cmake_options={
                **base, **dirs,
                "GVM_DATA_DIR": "/var",
                "GVMD_RUN_DIR": "/run/gvmd",
                "OPENVAS_DEFAULT_SOCKET": "/run/ospd/ospd-openvas.sock",
                "GVM_FEED_LOCK_PATH": "/var/lib/gvm/feed-update.lock",
                "SYSTEMD_SERVICE_DIR": "/lib/systemd/system",
                "LOGROTATE_DIR": "/etc/logrotate.d",
            },
        ),
        Component(
            "pg-gvm", CMAKE, "/usr/share/postgresql/{pg}/extension/pg-gvm.control",
            signature="{name}/releases/download/v{version}/{name}-{version}.tar.gz.asc",
            cmake_options={"CMAKE_BUILD_TYPE": "Release"},
        ),
        Component(
            "gsa", DIST, "{prefix}/share/gvm/gsad/web/index.html",
            archive="{name}/releases/download/v{version}/gsa-dist-{version}.tar.gz",
            signature="{name}/releases/download/v{version}/gsa-dist-{version}.tar.gz.asc",
        ),
        Component(
            "gsad", CMAKE, "{prefix}/sbin/gsad",
            signature="{name}/releases/download/v{version}/{name}-{version}.tar.gz.asc",
            cmake_options={
                **base, **dirs,
                "GVMD_RUN_DIR": "/run/gvmd",
                "GSAD_RUN_DIR": "/run/gsad",
                "LOGROTATE_DIR": "/etc/logrotate.d",
            },
        ),
        Component("openvas-smb", CMAKE, "{prefix}/bin/wmic", cmake_options=dict(base)),
        Component(
            "openvas-scanner", CMAKE, "{prefix}/sbin/openvas",
            cmake_options={
                **base,
                "INSTALL_OLD_SYNC_SCRIPT": "OFF",
                **dirs,
                "OPENVAS_FEED_LOCK_PATH": "/var/lib/openvas/feed-update.lock",
                "OPENVAS_RUN_DIR": "/run/ospd",
            },
        ),
        Component("ospd-openvas", PIP, "{prefix}/bin/ospd-openvas"),
        Component("notus-scanner", PIP, "{prefix}/bin/notus-scanner"),
        Component(
            "greenbone-feed-sync", PYPI, "{prefix}/bin/greenbone-feed-sync",
            package="greenbone-feed-sync",
        ),
        Component("gvm-tools", PYPI, "{prefix}/bin/gvm-cli", package="gvm-tools"),
    ]


# =========================================================================
# fetch
# =========================================================================

def signature_valid(ctx: ProvisionContext, comp: Component) -> bool:
    cfg = ctx.config
    archive, sig = comp.archive_path(cfg), comp.signature_path(cfg)
    if not (archive.is_file() and sig.is_file()):
        return False
    return ctx.commands.probe(["gpg", "--verify", str(sig), str(archive)]).success


def download(ctx: ProvisionContext, url: str, dest: Path) -> None:
    validate_url_scheme(url, context=f"download {dest.name}")
    ctx.commands.run(["curl", "-f", "-L", "-sS", url, "-o", str(dest)])


def fetch_step(comp: Component, config: Config) -> Step:
    def fetch(ctx: ProvisionContext) -> None:
        cfg = ctx.config
        archive, sig = comp.archive_path(cfg), comp.signature_path(cfg)
        download(ctx, comp.archive_url(cfg), archive)
        download(ctx, comp.signature_url(cfg), sig)
        try:
            ctx.commands.run(["gpg", "--verify", str(sig), str(archive)])
        except CommandFailedError:
            # 校验不过的包不能留在源码目录，否则下次会被当作已下载
            ctx.commands.apply(f"删除未通过校验的 {archive.name}", files.remove_path, archive)
            ctx.commands.apply(f"删除 {sig.name}", files.remove_path, sig)
            raise

    def verified(ctx: ProvisionContext) -> bool:
        return signature_valid(ctx, comp)

    return Step(
        name=f"fetch:{comp.name}",
        action=fetch,
        precondition=verified,
        postcondition=verified,
        description=f"下载并校验 {comp.name} {comp.version(config)}",
    )


# =========================================================================
# install
# =========================================================================

def deploy_stage(ctx: ProvisionContext, stage: Path) -> None:
    """把暂存根目录整体复制到线上文件系统"""
    ctx.commands.run(["cp", "-a", f"{stage}/.", "/"])


def extract(ctx: ProvisionContext, comp: Component, dest: Path) -> None:
    ctx.commands.apply(f"创建目录 {dest}", files.make_dirs, dest)
    ctx.commands.run(["tar", "-C", str(dest), "-xzf", str(comp.archive_path(ctx.config))])


def fresh_stage(ctx: ProvisionContext, comp: Component) -> Path:
    """清空并重建组件暂存根目录，避免旧版本残留文件被一起部署"""
    stage = comp.stage_root(ctx.config)
    ctx.commands.apply(f"清理暂存目录 {stage}", files.remove_path, stage)
    ctx.commands.apply(f"创建暂存目录 {stage}", files.make_dirs, stage)
    return stage


def install_cmake(ctx: ProvisionContext, comp: Component) -> None:
    cfg = ctx.config
    extract(ctx, comp, Path(cfg.source_dir))
    build = Path(cfg.build_dir) / comp.name
    ctx.commands.apply(f"创建构建目录 {build}", files.make_dirs, build)
    options = [f"-D{k}={v}" for k, v in comp.cmake_options.items()]
    ctx.commands.run(["cmake", str(comp.source_tree(cfg)), *options], cwd=str(build))
    ctx.commands.run(["make", f"-j{cfg.jobs}"], cwd=str(build))
    stage = fresh_stage(ctx, comp)
    ctx.commands.run(["make", f"DESTDIR={stage}", "install"], cwd=str(build))
    deploy_stage(ctx, stage)


def install_dist(ctx: ProvisionContext, comp: Component) -> None:
    cfg = ctx.config
    tree = comp.source_tree(cfg)
    extract(ctx, comp, tree)
    web = Path(cfg.install_prefix) / "share" / "gvm" / "gsad" / "web"
    ctx.commands.apply(f"创建目录 {web}", files.make_dirs, web)
    ctx.commands.run(["cp", "-a", f"{tree}/.", str(web)])


def _pip_install(ctx: ProvisionContext, stage: Path, target: str, cwd: str | None) -> None:
    ctx.commands.run(
        ["python3", "-m", "pip", "install", f"--root={stage}",
         "--no-warn-script-location", target],
        cwd=cwd,
    )


def install_pip(ctx: ProvisionContext, comp: Component) -> None:
    cfg = ctx.config
    extract(ctx, comp, Path(cfg.source_dir))
    stage = fresh_stage(ctx, comp)
    _pip_install(ctx, stage, ".", str(comp.source_tree(cfg)))
    deploy_stage(ctx, stage)


def install_pypi(ctx: ProvisionContext, comp: Component) -> None:
    version = comp.version(ctx.config)
    target = f"{comp.package}=={version}" if version else comp.package
    stage = fresh_stage(ctx, comp)
    _pip_install(ctx, stage, target, None)
    deploy_stage(ctx, stage)


INSTALLERS: dict[str, Callable[[ProvisionContext, Component], None]] = {
    CMAKE: install_cmake,
    DIST: install_dist,
    PIP: install_pip,
    PYPI: install_pypi,
}


def is_installed(ctx: ProvisionContext, comp: Component) -> bool:
    cfg = ctx.config
    return comp.stamp(cfg).exists() and comp.artefact_path(cfg).exists()


def install_step(comp: Component, config: Config) -> Step:
    installer = INSTALLERS[comp.kind]

    def install(ctx: ProvisionContext) -> None:
        installer(ctx, comp)
        stamp = comp.stamp(ctx.config)
        artefact = comp.artefact_path(ctx.config)
        if not artefact.exists():
            raise PostconditionError(f"{comp.name} 安装后未找到 {artefact}，不写版本戳")
        ctx.commands.apply(f"写入版本戳 {stamp.name}", _touch, stamp)

    def done(ctx: ProvisionContext) -> bool:
        return is_installed(ctx, comp)

    return Step(
        name=f"install:{comp.name}",
        action=install,
        precondition=done,
        postcondition=done,
        description=f"构建安装 {comp.name} {comp.version(config) or ''}".rstrip(),
    )


def _touch(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.touch()


def component_steps(config: Config) -> list[Step]:
    """每个组件 fetch + install（pypi 组件只有 install）"""
    steps: list[Step] = []
    for comp in greenbone_components(config):
        if comp.kind != PYPI:
            steps.append(fetch_step(comp, config))
        steps.append(install_step(comp, config))
    return steps


def find_component(config: Config, name: str) -> Component:
    for comp in greenbone_components(config):
        if comp.name == name:
            return comp
    raise KeyError(name)
