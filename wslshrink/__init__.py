# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# wslshrink/__init__.py
"""
wslshrink - reclaim disk space from Docker Desktop's WSL virtual disk

The disk image behind a WSL distribution grows on demand and never shrinks.
wslshrink exports the distribution, unregisters it, deletes the image, lets
Docker Desktop recreate a fresh one and turns on sparse mode.

Usage as a library:

    from wslshrink import ShrinkOptions, ShrinkOrchestrator
    from wslshrink.runtime import DockerDesktop, WindowsHost, WslCli

    opts = ShrinkOptions.from_env(force=False)
    orch = ShrinkOrchestrator(logger, WslCli(logger), DockerDesktop(logger, opts.engine_path), WindowsHost(logger))
    result = orch.run(opts)
"""

__version__ = "0.1.0"

from .config.options import ShrinkOptions
from .orchestrator import ShrinkOrchestrator, WorkflowResult

__all__ = [
    "__version__",
    "ShrinkOptions",
    "ShrinkOrchestrator",
    "WorkflowResult",
]
