# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# wslshrink/core/logger.py
"""
Console logging for wslshrink.

One named logger, one stderr handler (emoji lines or NDJSON), and an optional
log file that always records DEBUG. Structured fields travel as `extra={"ctx": {...}}`
and are rendered as trailing key=value pairs.
"""
from __future__ import annotations

import datetime as _dt
import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, MutableMapping, Optional, Tuple

from termcolor import colored as _colored

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LOGGER_NAME = "wslshrink"

# levelname -> (emoji, termcolor colour)
_LEVELS: Dict[str, Tuple[str, str]] = {
    "TRACE": ("🧬", "cyan"),
    "DEBUG": ("🔍", "blue"),
    "INFO": ("✅", "green"),
    "WARNING": ("⚠️", "yellow"),
    "ERROR": ("💥", "red"),
    "CRITICAL": ("🧨", "red"),
}


def is_tty(stream: Any) -> bool:
    try:
        return bool(stream.isatty())
    except Exception:
        return False


def _stderr_takes_unicode() -> bool:
    # legacy Windows consoles (cp437/cp1252) cannot print the emoji column
    try:
        "✅".encode(getattr(sys.stderr, "encoding", None) or "utf-8")
    except (UnicodeEncodeError, LookupError):
        return False
    return True


def c(
    text: str,
    color: Optional[str] = None,
    attrs: Optional[List[str]] = None,
    *,
    enable: bool = True,
) -> str:
    """termcolor wrapper that is a no-op when disabled or no colour is given."""
    if enable and color:
        return _colored(text, color=color, attrs=attrs or [])
    return text


def _clip(v: Any, limit: int = 240) -> str:
    s = str(v).replace("\r", "\\r").replace("\n", "\\n")
    return s if len(s) <= limit else s[: limit - 1] + "…"


def _kv_suffix(ctx: Optional[Mapping[str, Any]]) -> str:
    if not ctx:
        return ""
    return "".join(f" {k}={_clip(ctx[k])}" for k in sorted(ctx, key=str))


class ContextLoggerAdapter(logging.LoggerAdapter):
    """
    Adapter with a fixed ctx dict; per-call `extra={"ctx": ...}` is layered on top.

        log = Log.bind(logger, unit="docker-desktop")
        log.info("💽 %s", path)
    """

    def __init__(self, logger: logging.Logger, ctx: Optional[Mapping[str, Any]] = None):
        super().__init__(logger, {"ctx": dict(ctx or {})})

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra["ctx"] = {**self.extra["ctx"], **(extra.get("ctx") or {})}
        kwargs["extra"] = extra
        return msg, kwargs

    def bind(self, **ctx: Any) -> "ContextLoggerAdapter":
        return ContextLoggerAdapter(self.logger, {**self.extra["ctx"], **ctx})


@dataclass(frozen=True)
class LogStyle:
    color: bool = True
    millis: bool = False
    pid: bool = False
    source: bool = False
    utc: bool = False
    unicode: bool = True


class EmojiFormatter(logging.Formatter):
    """`HH:MM:SS 🔍 LEVEL    message k=v` lines; colour only when the stream is a TTY."""

    def __init__(self, style: LogStyle, *, stream: Any = None):
        super().__init__()
        self.style = style
        self.stream = stream

    def _clock(self, created: float) -> str:
        tz = _dt.timezone.utc if self.style.utc else None
        when = _dt.datetime.fromtimestamp(created, tz=tz)
        return when.strftime("%H:%M:%S.%f")[:-3] if self.style.millis else when.strftime("%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        emoji, colour = _LEVELS.get(record.levelname, ("•", ""))
        if not self.style.unicode:
            emoji = "·"
        colourise = self.style.color and is_tty(self.stream or sys.stderr)

        msg = record.getMessage()
        if record.levelno >= logging.WARNING:
            msg = c(msg, colour, ["bold"], enable=colourise)

        where = []
        if self.style.pid:
            where.append(f"pid={os.getpid()}")
        if self.style.source:
            where.append(f"{record.name}:{record.module}:{record.lineno}")
        origin = f" [{' '.join(where)}]" if where else ""

        level = c(f"{record.levelname:<8}", colour, enable=colourise)
        out = f"{self._clock(record.created)} {emoji} {level}{origin} {msg}{_kv_suffix(getattr(record, 'ctx', None))}"

        if record.exc_info:
            tb = self.formatException(record.exc_info)
            out += "\n" + c("\n".join("  " + ln for ln in tb.splitlines()), "red", enable=colourise)
        return out


class JsonFormatter(logging.Formatter):
    """One JSON object per record (NDJSON)."""

    def __init__(self, *, utc: bool = True):
        super().__init__()
        self.utc = utc

    def format(self, record: logging.LogRecord) -> str:
        tz = _dt.timezone.utc if self.utc else None
        obj: Dict[str, Any] = {
            "ts": _dt.datetime.fromtimestamp(record.created, tz=tz).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "pid": os.getpid(),
            "src": f"{record.module}:{record.lineno}",
        }
        ctx = getattr(record, "ctx", None)
        if ctx:
            obj["ctx"] = {str(k): _clip(v) for k, v in ctx.items()}
        if record.exc_info:
            obj["exc_type"] = getattr(record.exc_info[0], "__name__", "Exception")
            obj["traceback"] = self.formatException(record.exc_info)
        return json.dumps(obj, ensure_ascii=False)


def _extra(ctx: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    return {"ctx": ctx} if ctx else None


class Log:
    """Helpers every module logs through, so the console reads the same everywhere."""

    @staticmethod
    def _level_from_flags(verbose: int, quiet: int) -> int:
        # -q WARNING, -qq ERROR; -vv DEBUG, -vvv TRACE; quiet beats verbose
        if quiet:
            return logging.ERROR if quiet >= 2 else logging.WARNING
        if verbose >= 3:
            return TRACE
        return logging.DEBUG if verbose == 2 else logging.INFO

    @staticmethod
    def bind(logger: logging.Logger, **ctx: Any) -> ContextLoggerAdapter:
        return ContextLoggerAdapter(logger, ctx)

    @staticmethod
    def banner(logger: logging.Logger, title: str, *, char: str = "─") -> None:
        logger.info(f" {title.strip()} ".center(72, char))

    @staticmethod
    def step(logger: logging.Logger, msg: str, **ctx: Any) -> None:
        logger.info("➡️  %s", msg, extra=_extra(ctx))

    @staticmethod
    def ok(logger: logging.Logger, msg: str, **ctx: Any) -> None:
        logger.info("✅ %s", msg, extra=_extra(ctx))

    @staticmethod
    def warn(logger: logging.Logger, msg: str, **ctx: Any) -> None:
        logger.warning("⚠️  %s", msg, extra=_extra(ctx))

    @staticmethod
    def fail(logger: logging.Logger, msg: str, **ctx: Any) -> None:
        logger.error("💥 %s", msg, extra=_extra(ctx))

    @staticmethod
    def trace(logger: logging.Logger, msg: str, *args: Any, **ctx: Any) -> None:
        if logger.isEnabledFor(TRACE):
            logger.log(TRACE, msg, *args, extra=_extra(ctx))

    @staticmethod
    def setup(
        verbose: int = 0,
        log_file: Optional[str] = None,
        *,
        quiet: int = 0,
        color: bool = True,
        utc: bool = False,
        json_logs: bool = False,
        logger_name: str = LOGGER_NAME,
    ) -> logging.Logger:
        """
        (Re)configure the project logger and return it.

        Calling it again replaces the handlers, so tests and repeated CLI runs in one
        process do not stack duplicate output.
        """
        logger = logging.getLogger(logger_name)
        logger.propagate = False
        for h in list(logger.handlers):
            logger.removeHandler(h)
            h.close()

        level = Log._level_from_flags(verbose, quiet)
        unicode_ok = _stderr_takes_unicode()

        console = logging.StreamHandler(stream=sys.stderr)
        console.setLevel(level)
        console.setFormatter(
            JsonFormatter(utc=utc)
            if json_logs
            else EmojiFormatter(LogStyle(color=color, millis=verbose >= 3, pid=verbose >= 2, source=verbose >= 3, utc=utc, unicode=unicode_ok))
        )
        logger.addHandler(console)

        lowest = level
        if log_file:
            path = Path(log_file).expanduser().resolve()
            path.parent.mkdir(parents=True, exist_ok=True)
            lowest = min(level, logging.DEBUG)
            fh = logging.FileHandler(path, encoding="utf-8")
            fh.setLevel(lowest)
            fh.setFormatter(
                JsonFormatter(utc=utc)
                if json_logs
                else EmojiFormatter(LogStyle(color=False, millis=True, pid=True, source=True, utc=utc, unicode=unicode_ok))
            )
            logger.addHandler(fh)

        logger.setLevel(lowest)
        logger.debug("Logging ready: console=%s file=%s", logging.getLevelName(level), log_file or "-")
        Log.trace(logger, "TRACE enabled")
        return logger
