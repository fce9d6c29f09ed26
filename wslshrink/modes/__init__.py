# SPDX-License-Identifier: LGPL-3.0-or-later
# wslshrink/modes/__init__.py
from .diagnose_mode import DiagnoseMode

__all__ = ["DiagnoseMode"]
