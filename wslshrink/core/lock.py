# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# wslshrink/core/lock.py
"""
Exclusive advisory run lock.

Two shrink runs against the same WSL install would race each other through
shutdown/unregister/delete, so the orchestrator holds this lock for the whole run.
The lock file is left on disk after release; its JSON body names the last holder.
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import IO, Optional

from .exceptions import LockError
from .utils import U

try:
    import fcntl  # POSIX
except ImportError:  # pragma: no cover
    fcntl = None  # type: ignore

try:
    import msvcrt  # Windows
except ImportError:  # pragma: no cover
    msvcrt = None  # type: ignore


def _try_lock(fp: IO[str]) -> None:
    if fcntl is not None:
        fcntl.flock(fp.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        return
    if msvcrt is not None:
        fp.seek(0)
        msvcrt.locking(fp.fileno(), msvcrt.LK_NBLCK, 1)
        return
    raise OSError("no advisory locking primitive on this platform")


def _unlock(fp: IO[str]) -> None:
    if fcntl is not None:
        fcntl.flock(fp.fileno(), fcntl.LOCK_UN)
    elif msvcrt is not None:
        fp.seek(0)
        msvcrt.locking(fp.fileno(), msvcrt.LK_UNLCK, 1)


class RunLock:
    def __init__(self, logger: logging.Logger, path: Path):
        self.logger = logger
        self.path = Path(path)
        self._fp: Optional[IO[str]] = None

    @property
    def held(self) -> bool:
        return self._fp is not None

    def acquire(self) -> "RunLock":
        if self._fp is not None:
            return self

        U.ensure_dir(self.path.parent)
        fp = self.path.open("a+", encoding="utf-8")
        try:
            _try_lock(fp)
        except OSError as e:
            fp.close()
            raise LockError(
                msg=f"Another wslshrink run holds the lock: {self.path}",
                cause=e,
                context={"lock": str(self.path), "holder": self._read_holder()},
            )

        fp.seek(0)
        fp.truncate(0)
        fp.write(json.dumps({"pid": os.getpid(), "ts": U.now_ts()}))
        fp.flush()
        self._fp = fp
        self.logger.debug("Acquired run lock: %s", self.path)
        return self

    def release(self) -> None:
        if self._fp is None:
            return
        try:
            _unlock(self._fp)
        except OSError as e:
            self.logger.debug("Unlock failed for %s: %s", self.path, e)
        finally:
            self._fp.close()
            self._fp = None
            self.logger.debug("Released run lock: %s", self.path)

    def _read_holder(self) -> str:
        try:
            return self.path.read_text(encoding="utf-8").strip()[:200]
        except OSError:
            return "?"

    def __enter__(self) -> "RunLock":
        return self.acquire()

    def __exit__(self, *exc) -> None:
        self.release()
