# SPDX-License-Identifier: LGPL-3.0-or-later
# wslshrink/config/__init__.py
from .config_loader import Config
from .options import ShrinkOptions

__all__ = ["Config", "ShrinkOptions"]
