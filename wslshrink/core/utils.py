# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# wslshrink/core/utils.py
from __future__ import annotations

import datetime as _dt
import json
import logging
import shlex
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from .exceptions import Fatal

_SIZE_UNITS = ("KiB", "MiB", "GiB", "TiB", "PiB")


class U:
    @staticmethod
    def ensure_dir(p: Path) -> None:
        Path(p).mkdir(parents=True, exist_ok=True)

    @staticmethod
    def now_ts() -> str:
        return _dt.datetime.now().isoformat(timespec="seconds")

    @staticmethod
    def json_dump(obj: Any) -> str:
        return json.dumps(obj, indent=2, sort_keys=True, default=str)

    @staticmethod
    def human_bytes(n: Optional[int]) -> str:
        if n is None:
            return "unknown"
        if abs(n) < 1024:
            return f"{int(n)} B"
        value = float(n)
        for unit in _SIZE_UNITS:
            value /= 1024
            if abs(value) < 1024 or unit == _SIZE_UNITS[-1]:
                break
        return f"{value:.2f} {unit}"

    @staticmethod
    def _pretty_cmd(cmd: Sequence[Any]) -> str:
        return " ".join(shlex.quote(str(x)) for x in cmd)

    @staticmethod
    def decode_output(raw: Union[bytes, str, None]) -> str:
        """
        Decode CLI output to text.

        wsl.exe writes UTF-16LE to pipes (no BOM in most builds), everything else we run
        writes the console code page or UTF-8. A NUL in every other byte gives UTF-16 away.
        """
        if raw is None:
            return ""
        if isinstance(raw, str):
            return raw.replace("\x00", "")
        if raw.startswith((b"\xff\xfe", b"\xfe\xff")):
            return raw.decode("utf-16", "replace")
        if len(raw) >= 2 and raw[1:2] == b"\x00" and raw.count(b"\x00") * 3 >= len(raw):
            return raw.decode("utf-16-le", "replace")
        return raw.decode("utf-8", "replace").replace("\x00", "")

    @staticmethod
    def run_cmd(
        logger: logging.Logger,
        cmd: List[Any],
        *,
        check: bool = True,
        capture: bool = True,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        cwd: Optional[Union[str, Path]] = None,
        fatal: bool = False,
    ) -> subprocess.CompletedProcess:
        """
        Run `cmd` and return a CompletedProcess whose stdout/stderr are already text.

        check=True turns a non-zero exit into CalledProcessError (logged with its output).
        Timeouts and start failures (missing binary, access denied) are re-raised as-is.
        fatal=True converts all three into Fatal instead.
        """
        shown = U._pretty_cmd(cmd)
        logger.debug("$ %s", shown)

        try:
            proc = subprocess.run(
                [str(x) for x in cmd],
                check=False,
                capture_output=capture,
                env=env,
                timeout=timeout,
                cwd=None if cwd is None else str(cwd),
            )
        except subprocess.TimeoutExpired as e:
            logger.error("Timed out after %ss: %s", timeout, shown)
            if fatal:
                raise Fatal(124, f"Timed out: {shown}") from e
            raise
        except OSError as e:
            logger.debug("Could not start %s: %s", shown, e)
            if fatal:
                raise Fatal(1, f"Could not start: {shown}: {e}") from e
            raise

        cp = subprocess.CompletedProcess(
            proc.args,
            proc.returncode,
            stdout=U.decode_output(proc.stdout),
            stderr=U.decode_output(proc.stderr),
        )
        if not check or cp.returncode == 0:
            return cp

        detail = "\n".join(s for s in (cp.stdout.strip(), cp.stderr.strip()) if s)
        logger.error("Exit %d: %s%s", cp.returncode, shown, f"\n{detail}" if detail else " (no output)")
        if fatal:
            raise Fatal(cp.returncode, f"Command failed: {shown}")
        raise subprocess.CalledProcessError(cp.returncode, cmd, output=cp.stdout, stderr=cp.stderr)

    @staticmethod
    def one_line_output(cp: subprocess.CompletedProcess) -> str:
        """Compact stderr (or stdout) of a finished command for log context."""
        text = (cp.stderr or "").strip() or (cp.stdout or "").strip()
        return " ".join(text.split())[:400]

    @staticmethod
    def file_size(p: Path) -> Optional[int]:
        try:
            return Path(p).stat().st_size
        except FileNotFoundError:
            return None

    @staticmethod
    def safe_unlink(p: Path, *, missing_ok: bool = True) -> None:
        try:
            Path(p).unlink()
        except FileNotFoundError:
            if not missing_ok:
                raise
