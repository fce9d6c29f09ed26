# SPDX-License-Identifier: LGPL-3.0-or-later
# wslshrink/cli/__init__.py
from .argument_parser import build_parser, parse_args_with_config, validate_args

__all__ = ["build_parser", "parse_args_with_config", "validate_args"]
