# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

import subprocess
from unittest.mock import patch

import pytest

from wslshrink.core.exceptions import TrimError
from wslshrink.core.utils import U
from wslshrink.runtime.host import WindowsHost, drive_letter


def _cp(rc=0, out=""):
    return subprocess.CompletedProcess(["x"], rc, stdout=out, stderr="")


@pytest.mark.unit
class TestDriveLetter:
    @pytest.mark.parametrize(
        "path,want",
        [
            ("C:\\Users\\me\\AppData\\Local\\Docker\\wsl", "C"),
            ("d:/docker/wsl", "D"),
            ("\\\\server\\share\\wsl", None),
            ("/home/me/wsl", None),
        ],
    )
    def test_drive_letter(self, path, want):
        assert drive_letter(path) == want


@pytest.mark.unit
class TestWindowsHost:
    def test_retrim_command(self, logger):
        with patch.object(U, "run_cmd", return_value=_cp()) as run:
            WindowsHost(logger).retrim("C:\\Users\\me\\AppData\\Local\\Docker\\wsl")
        cmd = run.call_args.args[1]
        assert cmd[0] == "powershell.exe"
        assert cmd[-1] == "Optimize-Volume -DriveLetter C -ReTrim -Verbose"

    def test_retrim_failure(self, logger):
        with patch.object(U, "run_cmd", return_value=_cp(1)):
            with pytest.raises(TrimError) as ei:
                WindowsHost(logger).retrim("C:\\wsl")
        assert ei.value.context["drive"] == "C"

    def test_retrim_needs_drive_letter(self, logger):
        with pytest.raises(TrimError):
            WindowsHost(logger).retrim("/var/lib/wsl")

    def test_retrim_tool_missing(self, logger):
        with patch.object(U, "run_cmd", side_effect=FileNotFoundError("powershell.exe")):
            with pytest.raises(TrimError):
                WindowsHost(logger).retrim("C:\\wsl")

    def test_free_bytes_walks_up_to_existing_parent(self, tmp_path, logger):
        free = WindowsHost(logger).free_bytes(tmp_path / "not" / "yet" / "there.tar")
        assert isinstance(free, int) and free >= 0

    @pytest.mark.parametrize(
        "out,want",
        [
            ("This file is set as sparse", True),
            ("This file is NOT set as sparse", False),
            ("something else", None),
        ],
    )
    def test_sparse_flag(self, tmp_path, logger, out, want):
        p = tmp_path / "ext4.vhdx"
        p.write_bytes(b"")
        with patch.object(U, "run_cmd", return_value=_cp(0, out)):
            assert WindowsHost(logger).sparse_flag(p) is want

    def test_sparse_flag_missing_file(self, tmp_path, logger):
        assert WindowsHost(logger).sparse_flag(tmp_path / "none.vhdx") is None

    def test_delete_is_missing_ok(self, tmp_path, logger):
        p = tmp_path / "a.tar"
        p.write_bytes(b"x")
        host = WindowsHost(logger)
        host.delete(p)
        host.delete(p)
        assert not p.exists()
