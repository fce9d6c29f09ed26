# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# wslshrink/core/exceptions.py
"""
Error types for a shrink run.

Everything raised on purpose is a WslShrinkError carrying an exit code, a one-line
message, the underlying exception and a context dict for logs and JSON output.
`fatal` says whether the orchestrator stops on it; the soft ones after the
unregister step are only collected into the run result.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

_SECRET_MARKERS = ("pass", "secret", "token", "apikey", "api_key", "auth", "cookie", "credential")


def _exit_code(value: Any) -> int:
    try:
        code = int(value)
    except (TypeError, ValueError):
        return 1
    return 1 if code < 0 else min(code, 255)


def _squash(text: Optional[str], limit: int = 600) -> str:
    flat = " ".join((text or "").split())
    return flat if len(flat) <= limit else flat[: limit - 3] + "..."


def _redact(ctx: Dict[str, Any]) -> Dict[str, Any]:
    out = {}
    for k, v in ctx.items():
        secret = any(m in str(k).lower() for m in _SECRET_MARKERS)
        out[k] = "<redacted>" if secret else v
    return out


@dataclass(eq=False)
class WslShrinkError(Exception):
    code: int = 1
    msg: str = "error"
    cause: Optional[BaseException] = None
    context: Optional[Dict[str, Any]] = None

    fatal = True

    def __post_init__(self) -> None:
        self.code = _exit_code(self.code)
        self.msg = _squash(self.msg) or type(self).__name__
        self.context = dict(self.context or {})
        super().__init__(self.msg)

    def with_context(self, **ctx: Any) -> "WslShrinkError":
        assert self.context is not None
        self.context.update(ctx)
        return self

    def user_message(self, *, include_context: bool = False, include_cause: bool = False) -> str:
        text = self.msg
        if include_context and self.context:
            safe = _redact(self.context)
            text += " [" + _squash(", ".join(f"{k}={safe[k]!r}" for k in sorted(safe, key=str))) + "]"
        if include_cause and self.cause is not None:
            text += f" (cause: {type(self.cause).__name__}: {_squash(str(self.cause))})"
        return text

    def __str__(self) -> str:
        return self.msg

    def to_dict(self, *, include_cause: bool = False) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "type": type(self).__name__,
            "code": self.code,
            "message": self.msg,
            "context": _redact(self.context or {}),
        }
        if include_cause and self.cause is not None:
            out["cause"] = {"type": type(self.cause).__name__, "message": _squash(str(self.cause))}
        return out


class Fatal(WslShrinkError):
    """Stops the run; main() exits with a non-zero code."""


class ConfigError(Fatal):
    """Bad CLI arguments or config file contents (exit code 2)."""

    def __post_init__(self) -> None:
        if self.code == 1:
            self.code = 2
        super().__post_init__()


class PrivilegeError(Fatal):
    """The process is not elevated; nothing was touched."""


class RuntimeUnavailableError(Fatal):
    """wsl.exe could not be invoked at all (distinct from 'unit not found')."""


class LockError(Fatal):
    """Another run holds the lock file."""


class ExportError(WslShrinkError):
    """Export archive did not materialize (or could not fit) after the export call."""


class UnregisterError(WslShrinkError):
    """`wsl --unregister` reported a non-zero status."""


class DeleteError(WslShrinkError):
    fatal = False


class RestartError(WslShrinkError):
    fatal = False


class SparseError(WslShrinkError):
    fatal = False


class TrimError(WslShrinkError):
    fatal = False


def format_exception_for_cli(e: BaseException, *, verbose: int = 0) -> str:
    """
    One line for the terminal: message, plus context at -v, plus cause at -vv.
    """
    if isinstance(e, WslShrinkError):
        return e.user_message(include_context=verbose >= 1, include_cause=verbose >= 2)
    text = _squash(str(e)) or type(e).__name__
    return f"{type(e).__name__}: {text}" if verbose >= 2 else text
