# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# wslshrink/runtime/wsl.py
"""
WSL capability.

The orchestrator only ever talks to `WslRuntime`; `WslCli` is the real thing and
shells out to wsl.exe. Callers look at exit codes and, for `list`, at unit names.
"""
from __future__ import annotations

import logging
import re
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

from ..core.exceptions import RuntimeUnavailableError
from ..core.logger import Log
from ..core.utils import U

# `wsl -l -v` rows look like "* docker-desktop    Running   2"; the star marks the default.
_VERBOSE_ROW_RE = re.compile(r"^\s*\*?\s*(?P<name>\S+)\s+(?P<state>\S+)\s+(?P<version>\d+)\s*$")

# `wsl --list` with nothing installed: exit 0xFFFFFFFF (-1 on some builds) plus this message or error code.
_NO_UNITS_RCS = (-1, 0xFFFFFFFF)
_NO_UNITS_MARKERS = ("no installed distributions", "wsl_e_default_distro_not_found")


def is_empty_listing(cp: subprocess.CompletedProcess) -> bool:
    if cp.returncode not in _NO_UNITS_RCS:
        return False
    text = f"{cp.stdout or ''}\n{cp.stderr or ''}".lower()
    return any(m in text for m in _NO_UNITS_MARKERS)


def parse_unit_list(text: str, *, verbose: bool = False) -> List[str]:
    names: List[str] = []
    for i, raw in enumerate((text or "").splitlines()):
        line = raw.strip().strip("\ufeff")
        if not line:
            continue
        if verbose:
            if i == 0 and line.upper().startswith("NAME"):
                continue
            m = _VERBOSE_ROW_RE.match(line)
            if m:
                names.append(m.group("name"))
            continue
        names.append(line)
    return names


class WslRuntime(ABC):
    @abstractmethod
    def available(self) -> bool:
        """True if the CLI can be started at all."""

    @abstractmethod
    def shutdown(self) -> subprocess.CompletedProcess:
        ...

    @abstractmethod
    def export(self, unit: str, path: Path) -> subprocess.CompletedProcess:
        ...

    @abstractmethod
    def unregister(self, unit: str) -> subprocess.CompletedProcess:
        ...

    @abstractmethod
    def list_units(self, *, verbose: bool = False) -> List[str]:
        """Registered unit names; [] only when wsl.exe says nothing is installed."""

    @abstractmethod
    def set_sparse(self, unit: str, enabled: bool, *, allow_unsafe: bool = False) -> subprocess.CompletedProcess:
        ...

    def has_unit(self, unit: str) -> bool:
        want = unit.strip().lower()
        return any(n.lower() == want for n in self.list_units())


class WslCli(WslRuntime):
    def __init__(
        self,
        logger: logging.Logger,
        *,
        exe: str = "wsl.exe",
        export_timeout_s: Optional[float] = None,
        timeout_s: float = 120.0,
    ):
        self.logger = logger
        self.exe = exe
        self.export_timeout_s = export_timeout_s
        self.timeout_s = timeout_s

    def _run(self, *argv: str, timeout: Optional[float] = None) -> subprocess.CompletedProcess:
        cp = U.run_cmd(self.logger, [self.exe, *argv], check=False, timeout=timeout)
        Log.trace(self.logger, "wsl %s -> rc=%s", " ".join(argv), cp.returncode)
        return cp

    def available(self) -> bool:
        try:
            self._run("--list", "--quiet", timeout=self.timeout_s)
        except (OSError, subprocess.TimeoutExpired) as e:
            self.logger.debug("wsl.exe not usable: %s", e)
            return False
        return True

    def shutdown(self) -> subprocess.CompletedProcess:
        return self._run("--shutdown", timeout=self.timeout_s)

    def export(self, unit: str, path: Path) -> subprocess.CompletedProcess:
        return self._run("--export", unit, str(path), timeout=self.export_timeout_s)

    def unregister(self, unit: str) -> subprocess.CompletedProcess:
        return self._run("--unregister", unit, timeout=self.timeout_s)

    def list_units(self, *, verbose: bool = False) -> List[str]:
        cp = self._run("--list", "--verbose" if verbose else "--quiet", timeout=self.timeout_s)
        if cp.returncode != 0:
            if is_empty_listing(cp):
                return []
            raise RuntimeUnavailableError(
                msg="wsl --list failed",
                context={"rc": cp.returncode, "output": U.one_line_output(cp)},
            )
        return parse_unit_list(cp.stdout, verbose=verbose)

    def set_sparse(self, unit: str, enabled: bool, *, allow_unsafe: bool = False) -> subprocess.CompletedProcess:
        argv = ["--manage", unit, "--set-sparse", "true" if enabled else "false"]
        if allow_unsafe:
            argv.append("--allow-unsafe")
        return self._run(*argv, timeout=self.timeout_s)
