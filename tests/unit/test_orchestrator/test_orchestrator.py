# SPDX-License-Identifier: LGPL-3.0-or-later
"""Workflow tests for ShrinkOrchestrator against fake WSL / engine / host."""
from __future__ import annotations

import json
import logging
import subprocess
from unittest.mock import patch

import pytest

from fakes.fake_runtime import FakeClock, FakeEngine, FakeHost, FakeWsl, GiB, MiB, make_image
from wslshrink.config.options import ShrinkOptions
from wslshrink.core.checkpoints import WorkflowCheckpoint
from wslshrink.core.exceptions import (
    DeleteError,
    ExportError,
    Fatal,
    LockError,
    PrivilegeError,
    RestartError,
    RuntimeUnavailableError,
    SparseError,
    TrimError,
    UnregisterError,
)
from wslshrink.core.lock import RunLock
from wslshrink.core.utils import U
from wslshrink.orchestrator.orchestrator import ShrinkOrchestrator
from wslshrink.runtime.wsl import WslCli

UNIT = "docker-desktop"


def _options(tmp_path, **kw) -> ShrinkOptions:
    base = dict(
        unit_name=UNIT,
        export_path=tmp_path / "backup" / f"{UNIT}.tar",
        disk_folder=tmp_path / "wsl",
        engine_path=tmp_path / "Docker Desktop.exe",
        lock_path=tmp_path / "wslshrink.lock",
        wait_timeout_s=180.0,
        poll_interval_s=3.0,
    )
    base.update(kw)
    return ShrinkOptions(**base)


def _orch(logger, wsl, engine, host, clock=None) -> ShrinkOrchestrator:
    clock = clock or FakeClock()
    return ShrinkOrchestrator(logger, wsl, engine, host, clock=clock, sleep=clock.sleep, show_progress=False)


@pytest.fixture
def env(tmp_path):
    image = make_image(tmp_path / "wsl" / "ext4.vhdx", 100 * GiB)
    wsl = FakeWsl({UNIT, "Ubuntu"}, export_size=8 * GiB)
    engine = FakeEngine(wsl, UNIT, fresh_image=image, fresh_size=64 * MiB, checks_until_ready=2)
    host = FakeHost()
    return wsl, engine, host, image


@pytest.mark.scenario
class TestHappyPath:
    def test_full_shrink(self, tmp_path, logger, env):
        wsl, engine, host, image = env
        opts = _options(tmp_path)

        result = _orch(logger, wsl, engine, host).run(opts)

        assert result.size_before == 100 * GiB
        assert result.size_after == 64 * MiB
        assert result.freed_bytes == 100 * GiB
        assert result.completed is True
        assert result.sparse_enabled is True
        assert result.checkpoint == WorkflowCheckpoint.COMPLETE
        assert result.errors == []
        assert result.steps_skipped == []

        names = [c[0] for c in wsl.calls]
        assert names.index("shutdown") < names.index("export") < names.index("unregister") < names.index("set_sparse")
        assert wsl.calls_named("set_sparse") == [("set_sparse", UNIT, True, True)]
        assert engine.starts == 1
        assert host.trims == [opts.disk_folder]
        assert UNIT in wsl.units and "Ubuntu" in wsl.units

    def test_export_archive_removed_by_default(self, tmp_path, logger, env):
        wsl, engine, host, _ = env
        opts = _options(tmp_path)

        result = _orch(logger, wsl, engine, host).run(opts)

        assert wsl.calls_named("export")
        assert not opts.export_path.exists()
        assert result.export_kept is None

    def test_keep_export_retains_archive(self, tmp_path, logger, env):
        wsl, engine, host, _ = env
        opts = _options(tmp_path, keep_export=True)

        result = _orch(logger, wsl, engine, host).run(opts)

        assert opts.export_path.stat().st_size == 8 * GiB
        assert result.export_kept == opts.export_path

    def test_stale_archive_is_replaced_not_trusted(self, tmp_path, logger, env):
        wsl, engine, host, _ = env
        opts = _options(tmp_path)
        make_image(opts.export_path, 1)
        wsl.export_creates = False
        wsl.export_rc = 0

        with pytest.raises(ExportError):
            _orch(logger, wsl, engine, host).run(opts)

        assert wsl.calls_named("unregister") == []
        assert not opts.export_path.exists()

    def test_journal_records_last_checkpoint(self, tmp_path, logger, env):
        wsl, engine, host, _ = env
        journal = tmp_path / "journal.json"
        opts = _options(tmp_path, journal_path=journal)

        _orch(logger, wsl, engine, host).run(opts)

        data = json.loads(journal.read_text(encoding="utf-8"))
        assert data["checkpoint"] == "complete"
        assert [h["checkpoint"] for h in data["history"]][:3] == ["shutdown_done", "export_done", "unregister_done"]

    def test_summary_always_logged(self, tmp_path, logger, env, caplog):
        wsl, engine, host, _ = env
        caplog.set_level(logging.INFO, logger="tests.wslshrink")

        _orch(logger, wsl, engine, host).run(_options(tmp_path))

        text = caplog.text
        assert "Summary" in text
        assert "Size before" in text and "Size after" in text and "Sparse mode" in text


@pytest.mark.scenario
class TestAbortBeforeDestruction:
    def test_export_failure_aborts_without_force(self, tmp_path, logger, env, caplog):
        wsl, engine, host, image = env
        wsl.export_rc = 1
        wsl.export_creates = False
        caplog.set_level(logging.INFO, logger="tests.wslshrink")

        with pytest.raises(ExportError):
            _orch(logger, wsl, engine, host).run(_options(tmp_path))

        assert wsl.calls_named("unregister") == []
        assert host.deleted == []
        assert image.stat().st_size == 100 * GiB
        assert UNIT in wsl.units
        assert engine.starts == 0
        assert "Summary" in caplog.text

    def test_export_rc_zero_but_no_archive_aborts(self, tmp_path, logger, env):
        wsl, engine, host, _ = env
        wsl.export_creates = False

        with pytest.raises(ExportError) as ei:
            _orch(logger, wsl, engine, host).run(_options(tmp_path))

        assert "did not produce" in ei.value.msg
        assert wsl.calls_named("unregister") == []
        assert host.deleted == []

    def test_not_enough_space_for_export(self, tmp_path, logger, env):
        wsl, engine, host, _ = env
        host.free = 10 * GiB

        with pytest.raises(ExportError):
            _orch(logger, wsl, engine, host).run(_options(tmp_path))

        assert wsl.calls_named("export") == []
        assert wsl.calls_named("unregister") == []

    def test_unregister_failure_aborts_without_force(self, tmp_path, logger, env):
        wsl, engine, host, image = env
        wsl.unregister_rc = 1
        opts = _options(tmp_path)

        with pytest.raises(UnregisterError):
            _orch(logger, wsl, engine, host).run(opts)

        assert host.deleted == [opts.export_path]
        assert image.exists()
        assert engine.starts == 0
        # unit still registered, so the archive is not the last copy
        assert not opts.export_path.exists()

    def test_shutdown_failure_is_a_hard_gate(self, tmp_path, logger, env):
        wsl, engine, host, _ = env
        wsl.shutdown_rc = 1

        with pytest.raises(Fatal):
            _orch(logger, wsl, engine, host).run(_options(tmp_path))

        assert wsl.calls_named("export") == []
        assert host.deleted == []

    def test_broken_unit_listing_deletes_nothing(self, tmp_path, logger, env):
        _, _, host, image = env
        wsl = WslCli(logger, timeout_s=5)
        engine = FakeEngine(FakeWsl())
        seen = []

        def fake_run(_logger, cmd, **kw):
            seen.append(cmd[1])
            if cmd[1] == "--list":
                return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="Wsl/Service/E_UNEXPECTED")
            return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

        with patch.object(U, "run_cmd", side_effect=fake_run):
            with pytest.raises(RuntimeUnavailableError):
                _orch(logger, wsl, engine, host).run(_options(tmp_path))

        assert seen == ["--list", "--shutdown", "--list"]
        assert host.deleted == []
        assert image.stat().st_size == 100 * GiB
        assert engine.starts == 0

    def test_listing_error_from_runtime_aborts(self, tmp_path, logger, env):
        wsl, engine, host, image = env
        wsl.list_error = RuntimeUnavailableError(msg="wsl --list failed", context={"rc": 1})

        with pytest.raises(RuntimeUnavailableError):
            _orch(logger, wsl, engine, host).run(_options(tmp_path))

        assert wsl.calls_named("export") == []
        assert wsl.calls_named("unregister") == []
        assert host.deleted == []
        assert image.exists()


@pytest.mark.scenario
class TestForce:
    def test_export_failure_continues_under_force(self, tmp_path, logger, env):
        wsl, engine, host, _ = env
        wsl.export_rc = 1
        wsl.export_creates = False

        result = _orch(logger, wsl, engine, host).run(_options(tmp_path, force=True))

        assert wsl.calls_named("unregister") == [("unregister", UNIT)]
        assert any(isinstance(e, ExportError) for e in result.errors)
        assert any(s.startswith("export: failed under --force") for s in result.steps_skipped)
        assert result.completed is True

    def test_unregister_failure_continues_to_delete_under_force(self, tmp_path, logger, env):
        wsl, engine, host, image = env
        wsl.unregister_rc = 1

        result = _orch(logger, wsl, engine, host).run(_options(tmp_path, force=True))

        assert image in host.deleted
        assert any(isinstance(e, UnregisterError) for e in result.errors)
        assert result.freed_bytes == 100 * GiB


@pytest.mark.scenario
class TestSkipsAndAbsentUnit:
    def test_skip_export_never_calls_export(self, tmp_path, logger, env):
        wsl, engine, host, _ = env

        result = _orch(logger, wsl, engine, host).run(_options(tmp_path, skip_export=True))

        assert wsl.calls_named("export") == []
        assert "export: --skip-export" in result.steps_skipped
        assert wsl.calls_named("unregister") == [("unregister", UNIT)]
        assert result.completed is True

    def test_unit_absent_at_start(self, tmp_path, logger, env):
        wsl, engine, host, image = env
        wsl.units.discard(UNIT)

        result = _orch(logger, wsl, engine, host).run(_options(tmp_path))

        assert wsl.calls_named("export") == []
        assert wsl.calls_named("unregister") == []
        assert "export: unit not registered" in result.steps_skipped
        assert "unregister: unit not registered" in result.steps_skipped
        assert image in host.deleted
        assert engine.starts == 1
        assert result.completed is True

    def test_no_trim(self, tmp_path, logger, env):
        wsl, engine, host, _ = env

        result = _orch(logger, wsl, engine, host).run(_options(tmp_path, trim=False))

        assert host.trims == []
        assert "trim: --no-trim" in result.steps_skipped
        assert result.completed is True


@pytest.mark.scenario
class TestSoftFailures:
    def test_unit_never_reappears(self, tmp_path, logger, env):
        wsl, engine, host, _ = env
        engine.recreate = False
        clock = FakeClock()
        opts = _options(tmp_path)

        result = _orch(logger, wsl, engine, host, clock).run(opts)

        assert result.completed is False
        assert clock.now <= opts.wait_timeout_s + opts.poll_interval_s
        assert clock.now >= opts.wait_timeout_s
        assert all(s <= opts.poll_interval_s for s in clock.sleeps)
        assert wsl.calls_named("set_sparse") == []
        assert "sparse: unit was not recreated" in result.steps_skipped
        assert result.checkpoint == WorkflowCheckpoint.TRIM_REQUESTED
        assert host.trims
        assert not opts.export_path.exists()

    def test_zero_timeout_checks_once(self, tmp_path, logger, env):
        wsl, engine, host, _ = env
        engine.recreate = False
        clock = FakeClock()

        result = _orch(logger, wsl, engine, host, clock).run(_options(tmp_path, wait_timeout_s=0))

        assert result.completed is False
        assert clock.sleeps == []

    def test_unit_reappears_immediately(self, tmp_path, logger, env):
        wsl, engine, host, _ = env
        engine.checks_until_ready = 0
        clock = FakeClock()

        result = _orch(logger, wsl, engine, host, clock).run(_options(tmp_path))

        assert result.completed is True
        assert clock.sleeps == []

    def test_per_file_delete_failure_is_reported(self, tmp_path, logger, env):
        wsl, engine, host, image = env
        stuck = make_image(tmp_path / "wsl" / "docker_data.vhdx", 5 * GiB)
        host.undeletable = {stuck}

        result = _orch(logger, wsl, engine, host).run(_options(tmp_path))

        assert result.freed_bytes == 100 * GiB
        assert [r.path for r in result.deleted] == [image]
        errs = [e for e in result.errors if isinstance(e, DeleteError)]
        assert len(errs) == 1 and errs[0].context["path"] == str(stuck)
        assert result.completed is True
        assert stuck.exists()

    def test_sparse_failure_does_not_change_completed(self, tmp_path, logger, env):
        wsl, engine, host, _ = env
        wsl.sparse_rc = 1

        result = _orch(logger, wsl, engine, host).run(_options(tmp_path))

        assert result.completed is True
        assert result.sparse_enabled is False
        assert any(isinstance(e, SparseError) for e in result.errors)
        assert result.checkpoint == WorkflowCheckpoint.COMPLETE

    def test_trim_failure_is_recorded(self, tmp_path, logger, env):
        wsl, engine, host, _ = env
        host.trim_fails = True

        result = _orch(logger, wsl, engine, host).run(_options(tmp_path))

        assert result.completed is True
        assert any(isinstance(e, TrimError) for e in result.errors)

    def test_launcher_failure_falls_back_to_service(self, tmp_path, logger, env):
        wsl, engine, host, _ = env
        engine.start_fails = True

        result = _orch(logger, wsl, engine, host).run(_options(tmp_path))

        assert engine.service_starts == 1
        assert result.completed is True
        assert not any(isinstance(e, RestartError) for e in result.errors)

    def test_engine_cannot_start(self, tmp_path, logger, env):
        wsl, engine, host, _ = env
        engine.start_fails = True
        engine.service_fails = True

        result = _orch(logger, wsl, engine, host).run(_options(tmp_path))

        assert result.completed is False
        assert any(isinstance(e, RestartError) for e in result.errors)
        assert any(s.startswith("restart:") for s in result.steps_skipped)


@pytest.mark.scenario
class TestDataDiskLayout:
    @pytest.fixture
    def split_env(self, tmp_path):
        main = make_image(tmp_path / "wsl" / "main" / "ext4.vhdx", GiB)
        data = make_image(tmp_path / "wsl" / "docker_data.vhdx", 100 * GiB)
        wsl = FakeWsl({UNIT}, export_size=GiB)
        engine = FakeEngine(wsl, UNIT, fresh_image=main, fresh_size=64 * MiB)
        return wsl, engine, main, data

    def test_data_disk_does_not_count_toward_export_space(self, tmp_path, logger, split_env):
        wsl, engine, main, data = split_env
        host = FakeHost(free=10 * GiB)

        result = _orch(logger, wsl, engine, host).run(_options(tmp_path))

        assert len(wsl.calls_named("export")) == 1
        assert result.size_before == 101 * GiB
        assert result.completed is True
        assert not any(isinstance(e, ExportError) for e in result.errors)

    def test_unit_image_still_gates_export(self, tmp_path, logger, split_env):
        wsl, engine, main, data = split_env
        host = FakeHost(free=GiB // 2)

        with pytest.raises(ExportError) as ei:
            _orch(logger, wsl, engine, host).run(_options(tmp_path))

        assert ei.value.context["needed"] == "1.00 GiB"
        assert wsl.calls_named("export") == []
        assert data.exists() and main.exists()

    def test_sparse_flag_read_from_unit_image(self, tmp_path, logger, split_env):
        wsl, engine, main, data = split_env
        host = FakeHost(undeletable={data})

        result = _orch(logger, wsl, engine, host).run(_options(tmp_path))

        assert data.exists()
        assert host.sparse_queries == [main]
        assert result.sparse_flag is True


@pytest.mark.scenario
class TestInterrupted:
    def test_interrupt_after_unregister_keeps_archive(self, tmp_path, logger, env, caplog):
        wsl, engine, host, _ = env
        opts = _options(tmp_path, journal_path=tmp_path / "journal.json")
        caplog.set_level(logging.INFO, logger="tests.wslshrink")

        with patch.object(engine, "start", side_effect=KeyboardInterrupt):
            with pytest.raises(KeyboardInterrupt):
                _orch(logger, wsl, engine, host).run(opts)

        assert wsl.calls_named("unregister") == [("unregister", UNIT)]
        assert opts.export_path.stat().st_size == 8 * GiB
        assert opts.export_path not in host.deleted
        assert f"wsl --import {UNIT} <dir> {opts.export_path}" in caplog.text
        assert f"Export kept : {opts.export_path}" in caplog.text
        data = json.loads(opts.journal_path.read_text(encoding="utf-8"))
        assert data["checkpoint"] == "delete_done"

    def test_interrupt_before_unregister_removes_archive(self, tmp_path, logger, env):
        wsl, engine, host, image = env
        opts = _options(tmp_path)

        with patch.object(wsl, "unregister", side_effect=KeyboardInterrupt):
            with pytest.raises(KeyboardInterrupt):
                _orch(logger, wsl, engine, host).run(opts)

        assert not opts.export_path.exists()
        assert image.exists()


@pytest.mark.unit
class TestPreconditions:
    def test_privilege_error_before_any_step(self, tmp_path, logger, env):
        wsl, engine, host, _ = env
        host.elevated = False

        with pytest.raises(PrivilegeError):
            _orch(logger, wsl, engine, host).run(_options(tmp_path))

        assert wsl.calls == []

    def test_runtime_unavailable(self, tmp_path, logger, env):
        wsl, engine, host, _ = env
        wsl._available = False

        with pytest.raises(RuntimeUnavailableError):
            _orch(logger, wsl, engine, host).run(_options(tmp_path))

        assert [c[0] for c in wsl.calls] == ["available"]

    def test_concurrent_run_is_refused(self, tmp_path, logger, env):
        wsl, engine, host, _ = env
        opts = _options(tmp_path)

        with RunLock(logger, opts.lock_path):
            with pytest.raises(LockError):
                _orch(logger, wsl, engine, host).run(opts)

        assert wsl.calls_named("shutdown") == []


@pytest.mark.scenario
def test_second_run_is_idempotent(tmp_path, logger, env):
    wsl, engine, host, _ = env
    opts = _options(tmp_path)
    orch = _orch(logger, wsl, engine, host)

    orch.run(opts)
    second = orch.run(opts)

    assert second.errors == []
    assert second.completed is True
    assert second.size_before == second.size_after == 64 * MiB


@pytest.mark.unit
def test_plan_lists_commands_without_running_them(tmp_path, logger, env):
    wsl, engine, host, _ = env
    opts = _options(tmp_path, skip_export=True, trim=False)

    steps = _orch(logger, wsl, engine, host).plan(opts)

    assert steps[0] == "wsl --shutdown"
    assert "# export skipped (--skip-export)" in steps
    assert f"wsl --unregister {UNIT}" in steps
    assert not any("Optimize-Volume" in s for s in steps)
    assert wsl.calls == []
