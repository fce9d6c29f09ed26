# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# wslshrink/core/checkpoints.py
from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Any, Dict, List, Optional

from .utils import U


class WorkflowCheckpoint(IntEnum):
    """Last step of the shrink workflow that completed. Declaration order is run order."""

    NOT_STARTED = 0
    SHUTDOWN_DONE = 1
    EXPORT_DONE = 2
    UNREGISTER_DONE = 3
    DELETE_DONE = 4
    RESTART_REQUESTED = 5
    UNIT_RECREATED = 6
    SPARSE_REQUESTED = 7
    TRIM_REQUESTED = 8
    COMPLETE = 9

    @property
    def label(self) -> str:
        return self.name.lower()


class CheckpointOrderError(RuntimeError):
    pass


def _atomic_write_text(path: Path, text: str, *, encoding: str = "utf-8") -> None:
    """
    Write to a temp file in the same directory, fsync, then replace.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=path.name + ".", suffix=".tmp", dir=str(path.parent), text=True)
    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        Path(tmp_name).replace(path)
    finally:
        Path(tmp_name).unlink(missing_ok=True)


@dataclass
class SkippedStep:
    step: str
    reason: str

    def __str__(self) -> str:
        return f"{self.step}: {self.reason}"


@dataclass
class CheckpointTracker:
    """
    Forward-only checkpoint bookkeeping for one run.

    Nothing here is read back for control flow. The optional journal is for the
    operator: when a run is killed mid-way it tells them which step to recover from.
    """

    logger: logging.Logger
    journal_path: Optional[Path] = None
    current: WorkflowCheckpoint = WorkflowCheckpoint.NOT_STARTED
    skipped: List[SkippedStep] = field(default_factory=list)
    history: List[Dict[str, Any]] = field(default_factory=list)

    def advance(self, checkpoint: WorkflowCheckpoint, **data: Any) -> None:
        if checkpoint < self.current:
            raise CheckpointOrderError(f"checkpoint went backwards: {self.current.label} -> {checkpoint.label}")
        self.current = checkpoint
        self.history.append({"checkpoint": checkpoint.label, "ts": U.now_ts(), **data})
        self.logger.debug("📍 checkpoint=%s", checkpoint.label)
        self._write_journal()

    def skip(self, step: str, reason: str) -> None:
        self.skipped.append(SkippedStep(step, reason))
        self.logger.info("⏭️  Skipping %s: %s", step, reason)
        self._write_journal()

    def reached(self, checkpoint: WorkflowCheckpoint) -> bool:
        return self.current >= checkpoint

    @property
    def skipped_labels(self) -> List[str]:
        return [str(s) for s in self.skipped]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checkpoint": self.current.label,
            "pid": os.getpid(),
            "skipped": self.skipped_labels,
            "history": list(self.history),
        }

    def _write_journal(self) -> None:
        if self.journal_path is None:
            return
        try:
            _atomic_write_text(self.journal_path, json.dumps(self.to_dict(), indent=2, default=str))
        except OSError as e:
            self.logger.warning("Could not update journal %s: %s", self.journal_path, e)
