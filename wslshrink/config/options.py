# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# wslshrink/config/options.py
from __future__ import annotations

import argparse
import os
import tempfile
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from ..core.exceptions import ConfigError

DEFAULT_UNIT = "docker-desktop"
DEFAULT_WAIT_TIMEOUT_S = 180.0
DEFAULT_POLL_INTERVAL_S = 3.0
DEFAULT_ENGINE_SERVICE = "com.docker.service"


def _env_path(environ: Mapping[str, str], key: str, fallback: str) -> Path:
    v = (environ.get(key) or "").strip()
    return Path(v) if v else Path(fallback)


@dataclass(frozen=True)
class ShrinkOptions:
    """
    Everything a shrink run needs, resolved once at the entry point.

    Paths that depend on the user's environment are filled by `from_env`; the
    orchestrator itself never looks at os.environ.
    """

    unit_name: str = DEFAULT_UNIT
    export_path: Path = field(default_factory=lambda: Path(tempfile.gettempdir()) / f"{DEFAULT_UNIT}-backup.tar")
    disk_folder: Path = field(default_factory=lambda: Path("Docker") / "wsl")
    skip_export: bool = False
    force: bool = False
    keep_export: bool = False

    wait_timeout_s: float = DEFAULT_WAIT_TIMEOUT_S
    poll_interval_s: float = DEFAULT_POLL_INTERVAL_S
    engine_path: Path = field(default_factory=lambda: Path("Docker Desktop.exe"))
    engine_service: str = DEFAULT_ENGINE_SERVICE
    lock_path: Path = field(default_factory=lambda: Path(tempfile.gettempdir()) / "wslshrink.lock")
    journal_path: Optional[Path] = None
    allow_unsafe_sparse: bool = True
    trim: bool = True

    def __post_init__(self) -> None:
        if not (self.unit_name or "").strip():
            raise ConfigError(msg="unit name must not be empty")
        if self.wait_timeout_s < 0:
            raise ConfigError(msg="wait timeout must be >= 0", context={"wait_timeout_s": self.wait_timeout_s})
        if self.poll_interval_s <= 0:
            raise ConfigError(msg="poll interval must be > 0", context={"poll_interval_s": self.poll_interval_s})

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides: Any) -> "ShrinkOptions":
        """
        Build options with Windows per-user defaults:
          disk_folder  = %LOCALAPPDATA%\\Docker\\wsl
          engine_path  = %ProgramFiles%\\Docker\\Docker\\Docker Desktop.exe
          export_path  = %TEMP%\\<unit>-backup.tar
        Keys in `overrides` that are None are ignored.
        """
        env = os.environ if environ is None else environ
        unit = overrides.get("unit_name") or DEFAULT_UNIT

        local_appdata = _env_path(env, "LOCALAPPDATA", str(Path.home() / "AppData" / "Local"))
        program_files = _env_path(env, "ProgramFiles", r"C:\Program Files")
        temp_dir = _env_path(env, "TEMP", tempfile.gettempdir())

        base = cls(
            unit_name=unit,
            export_path=temp_dir / f"{unit}-backup.tar",
            disk_folder=local_appdata / "Docker" / "wsl",
            engine_path=program_files / "Docker" / "Docker" / "Docker Desktop.exe",
            lock_path=temp_dir / "wslshrink.lock",
        )
        return base.with_overrides(**overrides)

    def with_overrides(self, **overrides: Any) -> "ShrinkOptions":
        known = set(self.__dataclass_fields__)
        unknown = sorted(k for k in overrides if k not in known)
        if unknown:
            raise ConfigError(msg=f"unknown option(s): {', '.join(unknown)}")

        changes: Dict[str, Any] = {}
        for k, v in overrides.items():
            if v is None:
                continue
            if k.endswith("_path") or k == "disk_folder":
                v = Path(str(v)).expanduser()
            changes[k] = v
        return replace(self, **changes)

    @classmethod
    def from_args(cls, args: argparse.Namespace, environ: Optional[Mapping[str, str]] = None) -> "ShrinkOptions":
        return cls.from_env(
            environ,
            unit_name=args.unit_name,
            export_path=args.export_path,
            disk_folder=args.disk_folder,
            skip_export=bool(args.skip_export),
            force=bool(args.force),
            keep_export=bool(args.keep_export),
            wait_timeout_s=float(args.wait_timeout),
            poll_interval_s=float(args.poll_interval),
            engine_path=args.engine_path,
            engine_service=args.engine_service,
            lock_path=args.lock_file,
            journal_path=args.journal,
            trim=not bool(args.no_trim),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {k: (str(v) if isinstance(v, Path) else v) for k, v in asdict(self).items()}
