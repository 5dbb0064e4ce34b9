"""管理员凭据步骤单元测试"""

from __future__ import annotations

import os
import stat

import pytest

from provisioner.core.exceptions import CredentialError, PostconditionError
from provisioner.core.models import StepStatus
from provisioner.core.run import ProvisionRun
from provisioner.core.runner import StepRunner
from provisioner.services.credentials import (
    ADMIN_PASSWORD_LABEL,
    admin_exists,
    admin_user_step,
    feed_import_owner_step,
    parse_password,
    parse_user_uuid,
)

CREATED = "User created with password 'c0rrect-h0rse'.\n"
UUID = "8b0f5d1c-0a6e-4b0e-9c43-8f6e1d2f0a11"


class TestParsing:
    def test_password(self) -> None:
        assert parse_password(CREATED) == "c0rrect-h0rse"

    def test_password_missing(self) -> None:
        assert parse_password("Failed to create user: exists") is None

    def test_user_uuid(self) -> None:
        out = f"other 11111111-2222-3333-4444-555555555555\nadmin {UUID}\n"
        assert parse_user_uuid(out, "admin") == UUID
        assert parse_user_uuid(out, "nobody") is None


class TestAdminUser:
    def test_creates_secret_and_discloses(self, config, ctx, executor) -> None:
        executor.when("--create-user=admin", stdout=CREATED)
        step = admin_user_step(config)
        step.action(ctx)

        secret = config.credential_file
        assert stat.S_IMODE(os.stat(secret).st_mode) == 0o600
        assert open(secret, encoding="utf-8").read().strip() == "c0rrect-h0rse"
        assert ctx.disclosures[ADMIN_PASSWORD_LABEL] == "c0rrect-h0rse"
        assert step.postcondition(ctx)

    def test_disclosed_before_secret_write(self, config, ctx, executor) -> None:
        executor.when("--create-user=admin", stdout=CREATED)
        ctx.config = config.with_overrides(service_user="no-such-user-xyz")
        with pytest.raises(CredentialError):
            admin_user_step(config).action(ctx)
        assert ctx.disclosures[ADMIN_PASSWORD_LABEL] == "c0rrect-h0rse"

    def test_runs_gvmd_as_service_user(self, config, ctx, executor) -> None:
        executor.when("--create-user=admin", stdout=CREATED)
        admin_user_step(config).action(ctx)
        call = executor.calls[0]
        assert call[:4] == ["runuser", "-u", config.service_user, "--"]
        assert call[4] == str(config.sbin / "gvmd")

    def test_unparseable_output_fails(self, config, ctx, executor) -> None:
        executor.when("--create-user=admin", stdout="done\n")
        with pytest.raises(CredentialError):
            admin_user_step(config).action(ctx)
        assert not os.path.exists(config.credential_file)

    def test_unparseable_output_aborts_run(self, config, ctx, executor) -> None:
        executor.when("--create-user=admin", stdout="done\n")
        with ProvisionRun(handle_signals=False) as run:
            StepRunner(ctx).run([admin_user_step(config)], run)
        assert run.report.results[0].status == StepStatus.FAILED
        assert run.report.failed_step == "admin-user"

    def test_existing_admin_skipped(self, ctx, executor) -> None:
        executor.when("--get-users", stdout="admin\n")
        assert admin_exists(ctx)
        executor.when("--get-users", stdout="someone\n")
        assert not admin_exists(ctx)

    def test_secret_removed_in_cleanup(self, config, ctx, executor) -> None:
        executor.when("--create-user=admin", stdout=CREATED)
        with ProvisionRun(handle_signals=False) as run:
            StepRunner(ctx).run([admin_user_step(config)], run)
            assert os.path.exists(config.credential_file)
        assert not os.path.exists(config.credential_file)


class TestFeedImportOwner:
    def test_assigns_uuid(self, config, ctx, executor) -> None:
        executor.when("--verbose", stdout=f"admin {UUID}\n")
        feed_import_owner_step(config).action(ctx)
        assert executor.ran(
            "--modify-setting", config.feed_import_owner_setting, "--value", UUID,
        )

    def test_missing_uuid(self, config, ctx, executor) -> None:
        executor.when("--verbose", stdout="")
        with pytest.raises(PostconditionError):
            feed_import_owner_step(config).action(ctx)
