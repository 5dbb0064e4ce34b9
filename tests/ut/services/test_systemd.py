"""systemd 单元渲染与服务步骤单元测试"""

from __future__ import annotations

import os
import stat

from provisioner.services.systemd import (
    UnitSpec,
    feed_sync_step,
    greenbone_units,
    service_steps,
    unit_path,
    units_step,
    web_ui_url,
)


class TestUnitSpec:
    def test_render_sections(self) -> None:
        text = UnitSpec(
            name="demo", description="Demo", exec_start=("/usr/bin/demo", "--flag=a b"),
            user="gvm", after=("network.target",), restart_sec=60,
        ).render()
        assert text.startswith("[Unit]\nDescription=Demo\n")
        assert "After=network.target" in text
        assert "User=gvm" in text
        assert "ExecStart=/usr/bin/demo '--flag=a b'" in text
        assert "RestartSec=60" in text
        assert text.endswith("[Install]\nWantedBy=multi-user.target\n")

    def test_greenbone_units(self, config) -> None:
        units = {u.name: u for u in greenbone_units(config)}
        assert list(units) == ["notus-scanner", "ospd-openvas", "gvmd", "gsad"]
        assert units["gsad"].exec_start[0] == str(config.sbin / "gsad")
        assert f"--port={config.gsad_port}" in units["gsad"].exec_start
        assert "Alias=greenbone-security-assistant.service" in units["gsad"].render()
        assert all(u.user == config.service_user for u in units.values())


class TestUnitsStep:
    def test_writes_and_reloads(self, config, ctx, executor) -> None:
        step = units_step(config)
        assert not step.precondition(ctx)
        step.action(ctx)
        for unit in greenbone_units(config):
            path = unit_path(config, unit)
            assert path.read_text(encoding="utf-8") == unit.render()
            assert stat.S_IMODE(os.stat(path).st_mode) == 0o644
        assert executor.calls == [["systemctl", "daemon-reload"]]
        assert step.precondition(ctx)

    def test_changed_unit_rewritten(self, config, ctx) -> None:
        step = units_step(config)
        step.action(ctx)
        unit_path(config, greenbone_units(config)[0]).write_text("stale", encoding="utf-8")
        assert not step.precondition(ctx)


class TestServices:
    def test_service_order_and_start(self, config, ctx, executor) -> None:
        steps = service_steps(config)
        assert [s.name for s in steps] == [
            "service:notus-scanner", "service:ospd-openvas", "service:gvmd", "service:gsad",
        ]
        steps[-1].action(ctx)
        assert executor.calls == [
            ["systemctl", "enable", "gsad.service"],
            ["systemctl", "start", "gsad.service"],
        ]

    def test_running_service_skipped(self, config, ctx, executor) -> None:
        step = service_steps(config)[0]
        assert step.precondition(ctx)
        executor.when("is-active", returncode=3)
        assert not step.precondition(ctx)
        assert not step.postcondition(ctx)

    def test_feed_sync_optional(self, config) -> None:
        assert not feed_sync_step(config).required

    def test_web_ui_url(self, config) -> None:
        assert web_ui_url(config) == f"http://127.0.0.1:{config.gsad_port}"
        assert web_ui_url(config.with_overrides(gsad_listen="0.0.0.0")).startswith("http://")
