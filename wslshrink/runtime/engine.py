# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# wslshrink/runtime/engine.py
from __future__ import annotations

import logging
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path

from ..core.exceptions import RestartError
from ..core.utils import U


class ContainerEngine(ABC):
    """Something that recreates the WSL unit when it starts (Docker Desktop)."""

    @abstractmethod
    def start(self) -> None:
        """Launch the engine process. Raises RestartError if it cannot be started."""

    @abstractmethod
    def start_service(self) -> None:
        """Start the engine's background service. Raises RestartError on failure."""

    def restart(self, logger: logging.Logger) -> None:
        """Launcher first, service as fallback. Raises RestartError only if both fail."""
        try:
            self.start()
            return
        except RestartError as first:
            logger.warning("⚠️  %s; trying the service instead", first.user_message(include_context=True))
            try:
                self.start_service()
            except RestartError as second:
                raise RestartError(
                    msg="Could not start the container engine; start Docker Desktop manually",
                    cause=second,
                    context={"launcher": first.msg, "service": second.msg},
                )


class DockerDesktop(ContainerEngine):
    def __init__(self, logger: logging.Logger, exe_path: Path, *, service: str = "com.docker.service"):
        self.logger = logger
        self.exe_path = Path(exe_path)
        self.service = service

    def start(self) -> None:
        if not self.exe_path.is_file():
            raise RestartError(msg="Docker Desktop executable not found", context={"path": str(self.exe_path)})
        try:
            # Detached: Docker Desktop is a GUI process and outlives us.
            subprocess.Popen(
                [str(self.exe_path)],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                close_fds=True,
            )
        except OSError as e:
            raise RestartError(msg="Failed to launch Docker Desktop", cause=e, context={"path": str(self.exe_path)})
        self.logger.info("🐳 Launched %s", self.exe_path)

    def start_service(self) -> None:
        try:
            cp = U.run_cmd(self.logger, ["sc.exe", "start", self.service], check=False, timeout=60)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise RestartError(msg="Failed to start Docker service", cause=e, context={"service": self.service})
        # 1056: service already running
        if cp.returncode not in (0, 1056):
            raise RestartError(
                msg="Failed to start Docker service",
                context={"service": self.service, "rc": cp.returncode, "output": U.one_line_output(cp)},
            )
        self.logger.info("🐳 Started service %s", self.service)
