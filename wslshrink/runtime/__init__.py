# SPDX-License-Identifier: LGPL-3.0-or-later
# wslshrink/runtime/__init__.py
from .engine import ContainerEngine, DockerDesktop
from .host import HostSystem, WindowsHost
from .wsl import WslCli, WslRuntime

__all__ = ["ContainerEngine", "DockerDesktop", "HostSystem", "WindowsHost", "WslCli", "WslRuntime"]
