"""系统层、数据库、软件包步骤单元测试"""

from __future__ import annotations

import logging
import os
from dataclasses import replace

import pytest

from provisioner.core.exceptions import CommandFailedError
from provisioner.core.models import Severity, StepStatus
from provisioner.core.run import ProvisionRun
from provisioner.core.runner import StepRunner
from provisioner.services import database, packages, system


class TestPackages:
    def test_installed_requires_every_package(self, ctx, executor) -> None:
        executor.when("dpkg-query", stdout="install ok installed\ninstall ok installed\n")
        assert packages.installed(ctx, ("a", "b"))
        executor.when("dpkg-query", stdout="install ok installed\n")
        assert not packages.installed(ctx, ("a", "b"))

    def test_dpkg_query_failure(self, ctx, executor) -> None:
        executor.when("dpkg-query", returncode=1)
        assert not packages.installed(ctx, ("a",))

    def test_steps(self, config, ctx, executor) -> None:
        steps = {s.name: s for s in packages.package_steps(config)}
        assert list(steps)[0] == "packages:index"
        assert steps["packages:reporting"].severity == Severity.OPTIONAL
        steps["packages:build-tools"].action(ctx)
        assert executor.ran("apt-get", "install", "--assume-yes", "--no-install-recommends", "cmake")

    def test_missing_extras_warn_only(self, config, ctx, executor, caplog) -> None:
        executor.when("apt-get", "install", "nmap", returncode=100)
        step = next(s for s in packages.package_steps(config) if s.name == "packages:scanner")
        step = replace(step, precondition=None, postcondition=None)
        with ProvisionRun(handle_signals=False) as run:
            StepRunner(ctx).run([step], run)
        result = run.report.results[0]
        assert result.status == StepStatus.WARNED
        assert result.warnings == ["附加软件包未安装: nmap"]
        assert run.exit_status == 0
        assert executor.ran("apt-get", "install", "libmicrohttpd-dev")
        assert not [r for r in caplog.records if r.levelno >= logging.ERROR]

    def test_extras_installed_without_warning(self, config, ctx, executor) -> None:
        step = next(s for s in packages.package_steps(config) if s.name == "packages:python")
        step.action(ctx)
        assert executor.ran("apt-get", "install", "python3-impacket")
        assert ctx.warnings == []

    def test_postgres_dev_follows_version(self, config) -> None:
        cfg = config.with_overrides(postgres_version="16")
        gvmd = next(g for g in packages.package_groups(cfg) if g.name == "gvmd")
        assert "postgresql-server-dev-16" in gvmd.packages


class TestServiceAccount:
    def test_creates_and_adds_invoker(self, config, ctx, executor) -> None:
        cfg = config.with_overrides(invoking_user="alice")
        ctx.config = cfg
        system.service_account_step(cfg).action(ctx)
        assert executor.ran("useradd", "-r", "-M", "-U", cfg.service_user)
        assert executor.ran("usermod", "-aG", cfg.service_user, "alice")

    def test_root_invoker_not_added(self, ctx, executor) -> None:
        ctx.config = ctx.config.with_overrides(invoking_user="root")
        system.service_account_step(ctx.config).action(ctx)
        assert not executor.ran("usermod")

    def test_skipped_when_exists(self, config, ctx, executor) -> None:
        assert system.service_account_step(config).precondition(ctx)
        executor.when("getent", returncode=2)
        assert not system.service_account_step(config).precondition(ctx)


class TestConfigFiles:
    def test_mosquitto_lines_idempotent(self, config, ctx) -> None:
        step = system.mosquitto_step(config)
        step.action(ctx)
        step.action(ctx)
        text = open(config.openvas_conf, encoding="utf-8").read()
        assert text.count("mqtt_server_uri = localhost:1883") == 1
        assert step.postcondition(ctx)

    def test_redis_copies_scanner_conf(self, config, ctx, executor) -> None:
        system.redis_step(config).action(ctx)
        assert executor.ran("cp")
        assert executor.ran("systemctl", "start", system.REDIS_UNIT)
        assert system.REDIS_SOCKET_LINE in open(config.openvas_conf, encoding="utf-8").read()

    def test_sudoers_validated_before_install(self, config, ctx, executor) -> None:
        system.sudoers_step(config).action(ctx)
        flat = [c[0] for c in executor.calls]
        assert flat == ["visudo", "install"]
        assert executor.ran("install", "-m", "0440", config.sudoers_file)

    def test_sudoers_rejected_draft_not_installed(self, config, ctx, executor) -> None:
        executor.when("visudo", returncode=1)
        with pytest.raises(CommandFailedError):
            system.sudoers_step(config).action(ctx)
        assert not executor.ran("install")

    def test_sudo_configured(self, config, ctx) -> None:
        os.makedirs(os.path.dirname(config.sudoers_file))
        with open(config.sudoers_file, "w", encoding="utf-8") as f:
            f.write(system.sudo_rule(config) + "\n")
        assert system.sudo_configured(ctx)

    def test_signing_key_ownertrust_via_stdin(self, config, ctx, executor) -> None:
        system.signing_key_step(config).action(ctx)
        idx = next(i for i, c in enumerate(executor.calls) if "--import-ownertrust" in c)
        assert executor.inputs[idx] == f"{config.signing_key_fingerprint}:6:\n"


class TestDatabase:
    def test_role_probe(self, ctx, executor) -> None:
        executor.when("psql", "-tAc", stdout="1\n")
        assert database.role_exists(ctx, "gvm")
        executor.when("psql", "-tAc", stdout="")
        assert not database.role_exists(ctx, "gvm")

    def test_psql_failure_is_undecidable(self, ctx, executor) -> None:
        executor.when("psql", returncode=2)
        with pytest.raises(CommandFailedError):
            database.database_exists(ctx, "gvmd")

    def test_commands_run_as_postgres(self, config, ctx, executor) -> None:
        steps = {s.name: s for s in database.database_steps(config)}
        steps["db-database"].action(ctx)
        assert executor.calls[-1] == [
            "runuser", "-u", "postgres", "--", "createdb", "-O", config.service_user, "gvmd",
        ]

    def test_dba_role_created_once(self, config, ctx, executor) -> None:
        steps = {s.name: s for s in database.database_steps(config)}
        executor.when("psql", "-tAc", stdout="1\n")
        steps["db-dba-role"].action(ctx)
        assert not executor.ran("CREATE ROLE dba WITH SUPERUSER NOINHERIT;")
        assert executor.ran(f"GRANT dba TO {config.service_user};")
