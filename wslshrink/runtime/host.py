# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# wslshrink/runtime/host.py
from __future__ import annotations

import ctypes
import logging
import os
import shutil
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path, PureWindowsPath
from typing import Optional

from ..core.exceptions import TrimError
from ..core.utils import U


def drive_letter(path: Path) -> Optional[str]:
    drive = PureWindowsPath(str(path)).drive
    if len(drive) == 2 and drive[1] == ":" and drive[0].isalpha():
        return drive[0].upper()
    return None


class HostSystem(ABC):
    @abstractmethod
    def is_elevated(self) -> bool:
        ...

    @abstractmethod
    def free_bytes(self, path: Path) -> Optional[int]:
        """Free space on the volume holding `path` (nearest existing parent), None if unknown."""

    @abstractmethod
    def retrim(self, path: Path) -> None:
        """TRIM the whole volume holding `path`. Raises TrimError."""

    @abstractmethod
    def sparse_flag(self, path: Path) -> Optional[bool]:
        """Reporting only: whether the filesystem marks `path` sparse, None if unknown."""

    def delete(self, path: Path) -> None:
        U.safe_unlink(path)


class WindowsHost(HostSystem):
    def __init__(self, logger: logging.Logger, *, trim_timeout_s: float = 1800.0):
        self.logger = logger
        self.trim_timeout_s = trim_timeout_s

    def is_elevated(self) -> bool:
        if os.name == "nt":
            try:
                return bool(ctypes.windll.shell32.IsUserAnAdmin())  # type: ignore[attr-defined]
            except (AttributeError, OSError):
                return False
        return os.geteuid() == 0

    def free_bytes(self, path: Path) -> Optional[int]:
        p = Path(path)
        while not p.exists():
            if p.parent == p:
                return None
            p = p.parent
        try:
            return shutil.disk_usage(p).free
        except OSError:
            return None

    def retrim(self, path: Path) -> None:
        letter = drive_letter(path)
        if letter is None:
            raise TrimError(msg="Cannot determine the drive letter to optimize", context={"path": str(path)})
        cmd = [
            "powershell.exe",
            "-NoProfile",
            "-NonInteractive",
            "-Command",
            f"Optimize-Volume -DriveLetter {letter} -ReTrim -Verbose",
        ]
        try:
            cp = U.run_cmd(self.logger, cmd, check=False, timeout=self.trim_timeout_s)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise TrimError(msg="Volume optimize could not run", cause=e, context={"drive": letter})
        if cp.returncode != 0:
            raise TrimError(
                msg="Volume optimize failed",
                context={"drive": letter, "rc": cp.returncode, "output": U.one_line_output(cp)},
            )
        self.logger.info("🧹 ReTrim finished on %s:", letter)

    def sparse_flag(self, path: Path) -> Optional[bool]:
        if not Path(path).exists():
            return None
        try:
            cp = U.run_cmd(self.logger, ["fsutil.exe", "sparse", "queryflag", str(path)], check=False, timeout=30)
        except (OSError, subprocess.TimeoutExpired) as e:
            self.logger.debug("fsutil unavailable: %s", e)
            return None
        if cp.returncode != 0:
            return None
        out = cp.stdout.lower()
        # "This file is NOT set as sparse" / "This file is set as sparse"
        if "not set as sparse" in out:
            return False
        if "set as sparse" in out:
            return True
        return None
