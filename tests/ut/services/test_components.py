"""上游组件下载/校验/安装步骤单元测试"""

from __future__ import annotations

import logging

import pytest

from provisioner.core.context import ProvisionContext
from provisioner.core.exceptions import CommandFailedError, PostconditionError, ValidationError
from provisioner.core.run import ProvisionRun
from provisioner.core.runner import StepRunner
from provisioner.services.components import (
    PYPI,
    component_steps,
    fetch_step,
    find_component,
    greenbone_components,
    install_step,
)


class TestComponentCatalogue:
    def test_dependency_order(self, config) -> None:
        names = [c.name for c in greenbone_components(config)]
        assert names.index("gvm-libs") < names.index("gvmd")
        assert names.index("gvm-libs") < names.index("openvas-scanner")
        assert names.index("openvas-smb") < names.index("openvas-scanner")

    def test_signature_naming(self, config) -> None:
        base = config.download_base
        v = config.version("gvm-libs")
        assert find_component(config, "gvm-libs").signature_url(config) == (
            f"{base}/gvm-libs/releases/download/v{v}/gvm-libs-v{v}.tar.gz.asc"
        )
        v = config.version("gvmd")
        assert find_component(config, "gvmd").signature_url(config) == (
            f"{base}/gvmd/releases/download/v{v}/gvmd-{v}.tar.gz.asc"
        )

    def test_gsa_uses_dist_archive(self, config) -> None:
        v = config.version("gsa")
        assert find_component(config, "gsa").archive_url(config).endswith(
            f"gsa/releases/download/v{v}/gsa-dist-{v}.tar.gz",
        )

    def test_pypi_components_have_no_fetch(self, config) -> None:
        names = [s.name for s in component_steps(config)]
        for comp in greenbone_components(config):
            assert f"install:{comp.name}" in names
            assert (f"fetch:{comp.name}" in names) == (comp.kind != PYPI)

    def test_unknown_component(self, config) -> None:
        with pytest.raises(KeyError):
            find_component(config, "nope")


class TestFetch:
    def test_downloads_and_verifies(self, ctx, config, executor) -> None:
        comp = find_component(config, "gvm-libs")
        fetch_step(comp, config).action(ctx)
        assert executor.ran("curl", comp.archive_url(config))
        assert executor.ran("curl", comp.signature_url(config))
        assert executor.ran("gpg", "--verify")

    def test_bad_signature_removes_download(self, ctx, config, executor) -> None:
        comp = find_component(config, "gvmd")
        archive, sig = comp.archive_path(config), comp.signature_path(config)

        def fake_download(args: list[str]) -> None:
            dest = args[args.index("-o") + 1]
            with open(dest, "w", encoding="utf-8") as f:
                f.write("data")

        archive.parent.mkdir(parents=True)
        executor.when("curl", effect=fake_download)
        executor.when("gpg", "--verify", returncode=1, stderr="BAD signature")
        with pytest.raises(CommandFailedError):
            fetch_step(comp, config).action(ctx)
        assert not archive.exists()
        assert not sig.exists()

    def test_precondition_requires_valid_signature(self, ctx, config, executor) -> None:
        comp = find_component(config, "gvm-libs")
        step = fetch_step(comp, config)
        assert not step.precondition(ctx)
        archive = comp.archive_path(config)
        archive.parent.mkdir(parents=True)
        archive.write_text("x", encoding="utf-8")
        comp.signature_path(config).write_text("x", encoding="utf-8")
        assert step.precondition(ctx)
        executor.when("gpg", "--verify", returncode=1)
        assert not step.precondition(ctx)

    def test_rejects_non_http_base(self, ctx, config) -> None:
        cfg = config.with_overrides(download_base="file:///srv")
        comp = find_component(cfg, "gvm-libs")
        with pytest.raises(ValidationError):
            fetch_step(comp, cfg).action(ProvisionContext(config=cfg, commands=ctx.commands))


class TestInstall:
    def test_cmake_sequence_and_stamp(self, ctx, config, executor) -> None:
        comp = find_component(config, "gvm-libs")
        artefact = comp.artefact_path(config)
        artefact.mkdir(parents=True)
        install_step(comp, config).action(ctx)

        flat = [" ".join(c) for c in executor.calls]
        assert flat[0].startswith("tar ")
        assert flat[1].startswith("cmake ")
        assert "-DCMAKE_INSTALL_PREFIX=" + config.install_prefix in executor.calls[1]
        assert flat[2] == f"make -j{config.jobs}"
        assert executor.calls[3][:2] == ["make", f"DESTDIR={comp.stage_root(config)}"]
        assert flat[4] == f"cp -a {comp.stage_root(config)}/. /"
        assert comp.stamp(config).exists()
        assert install_step(comp, config).precondition(ctx)

    def test_no_stamp_without_artefact(self, ctx, config) -> None:
        comp = find_component(config, "gsad")
        step = install_step(comp, config)
        with pytest.raises(PostconditionError, match="gsad"):
            step.action(ctx)
        assert not comp.stamp(config).exists()
        assert not step.postcondition(ctx)

    def test_missing_artefact_logs_one_error(self, ctx, config, caplog) -> None:
        comp = find_component(config, "gsad")
        with ProvisionRun(handle_signals=False) as run:
            StepRunner(ctx).run([install_step(comp, config)], run)
        assert run.report.failed_step == "install:gsad"
        step_errors = [
            r for r in caplog.records
            if r.levelno >= logging.ERROR and r.name != "provisioner.core.run"
        ]
        assert len(step_errors) == 1
        assert "gsad" in step_errors[0].getMessage()

    def test_version_bump_reinstalls(self, ctx, config) -> None:
        comp = find_component(config, "gvm-libs")
        comp.artefact_path(config).mkdir(parents=True)
        install_step(comp, config).action(ctx)

        bumped = config.with_overrides(versions={**config.versions, "gvm-libs": "99.0.0"})
        ctx_bumped = ProvisionContext(config=bumped, commands=ctx.commands)
        assert not install_step(comp, bumped).precondition(ctx_bumped)

    def test_pypi_pins_version(self, ctx, config, executor) -> None:
        cfg = config.with_overrides(versions={**config.versions, "gvm-tools": "24.1.0"})
        comp = find_component(cfg, "gvm-tools")
        install_step(comp, cfg).action(ProvisionContext(config=cfg, commands=ctx.commands))
        assert executor.ran("pip", "install", "gvm-tools==24.1.0")

    def test_dist_copies_into_web_root(self, ctx, config, executor) -> None:
        comp = find_component(config, "gsa")
        install_step(comp, config).action(ctx)
        web = f"{config.install_prefix}/share/gvm/gsad/web"
        assert executor.ran("cp", "-a", web)
