# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# wslshrink/orchestrator/orchestrator.py

from __future__ import annotations

import contextlib
import logging
import subprocess
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from .. import disk_images
from ..config.options import ShrinkOptions
from ..core.checkpoints import CheckpointTracker, WorkflowCheckpoint
from ..core.exceptions import (
    DeleteError,
    ExportError,
    Fatal,
    PrivilegeError,
    RestartError,
    RuntimeUnavailableError,
    SparseError,
    TrimError,
    UnregisterError,
    WslShrinkError,
)
from ..core.lock import RunLock
from ..core.logger import Log, is_tty
from ..core.polling import Clock, Sleep, wait_until
from ..core.utils import U
from ..disk_images import DiskImageRecord
from ..runtime.engine import ContainerEngine
from ..runtime.host import HostSystem
from ..runtime.wsl import WslRuntime


@dataclass
class WorkflowResult:
    size_before: int = 0
    size_after: int = 0
    sparse_enabled: bool = False
    completed: bool = False
    steps_skipped: List[str] = field(default_factory=list)

    checkpoint: WorkflowCheckpoint = WorkflowCheckpoint.NOT_STARTED
    freed_bytes: int = 0
    deleted: List[DiskImageRecord] = field(default_factory=list)
    errors: List[WslShrinkError] = field(default_factory=list)
    sparse_flag: Optional[bool] = None
    export_kept: Optional[Path] = None
    # an archive was written or found at export_path during this run
    export_seen: bool = False

    @property
    def reclaimed_bytes(self) -> int:
        return max(0, self.size_before - self.size_after)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "size_before": self.size_before,
            "size_after": self.size_after,
            "reclaimed_bytes": self.reclaimed_bytes,
            "freed_bytes": self.freed_bytes,
            "sparse_enabled": self.sparse_enabled,
            "sparse_flag": self.sparse_flag,
            "completed": self.completed,
            "checkpoint": self.checkpoint.label,
            "steps_skipped": list(self.steps_skipped),
            "deleted": [r.to_dict() for r in self.deleted],
            "errors": [e.to_dict() for e in self.errors],
            "export_kept": str(self.export_kept) if self.export_kept else None,
        }


def _failed(cp: subprocess.CompletedProcess) -> bool:
    return cp.returncode != 0


class ShrinkOrchestrator:
    """
    Export / unregister / recreate workflow for a WSL unit's virtual disk.

    Every check that can stop the run happens before anything destructive:
    privileges, wsl.exe availability, shutdown, export verification and unregister
    status. Everything after the unregister is best-effort and only recorded.
    """

    def __init__(
        self,
        logger: logging.Logger,
        runtime: WslRuntime,
        engine: ContainerEngine,
        host: HostSystem,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleep = time.sleep,
        show_progress: Optional[bool] = None,
    ):
        self.logger = logger
        self.runtime = runtime
        self.engine = engine
        self.host = host
        self.clock = clock
        self.sleep = sleep
        self.show_progress = is_tty(sys.stderr) if show_progress is None else show_progress

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self, options: ShrinkOptions) -> WorkflowResult:
        log = Log.bind(self.logger, unit=options.unit_name)
        Log.trace(self.logger, "🧠 run options=%s", options.to_dict())

        self._preflight(options)

        result = WorkflowResult()
        tracker = CheckpointTracker(self.logger, options.journal_path)

        with RunLock(self.logger, options.lock_path):
            before = disk_images.scan(options.disk_folder)
            result.size_before = disk_images.total_size(before)
            for rec in before:
                log.info("💽 %s: %s", rec.path, U.human_bytes(rec.size_bytes))
            if not before:
                log.info("No known disk images under %s", options.disk_folder)

            finished = False
            try:
                self._run_steps(options, tracker, result)
                finished = True
            finally:
                self._finish(options, tracker, result, finished=finished)

        return result

    def plan(self, options: ShrinkOptions) -> List[str]:
        """The commands a run would issue, in order. Nothing is executed."""
        unit = options.unit_name
        steps = ["wsl --shutdown"]
        if options.skip_export:
            steps.append("# export skipped (--skip-export)")
        else:
            steps.append(f"wsl --export {unit} {options.export_path}")
        steps.append(f"wsl --unregister {unit}")
        for name in disk_images.KNOWN_IMAGE_NAMES:
            steps.append(f"delete {Path(options.disk_folder) / name}")
        steps.append(f"start {options.engine_path} (fallback: sc start {options.engine_service})")
        steps.append(
            f"wait for {unit} in `wsl --list --quiet` "
            f"(timeout {options.wait_timeout_s:.0f}s, every {options.poll_interval_s:.0f}s)"
        )
        sparse = f"wsl --manage {unit} --set-sparse true"
        steps.append(sparse + (" --allow-unsafe" if options.allow_unsafe_sparse else ""))
        if options.trim:
            steps.append(f"Optimize-Volume -ReTrim on the volume holding {options.disk_folder}")
        if not options.keep_export and not options.skip_export:
            steps.append(f"delete {options.export_path}")
        return steps

    # ------------------------------------------------------------------
    # Hard gates
    # ------------------------------------------------------------------

    def _preflight(self, options: ShrinkOptions) -> None:
        Log.step(self.logger, "Preflight checks")
        if not self.host.is_elevated():
            raise PrivilegeError(msg="Administrator privileges are required; re-run from an elevated shell")
        if not self.runtime.available():
            raise RuntimeUnavailableError(msg="wsl.exe could not be started; is WSL installed?")
        Log.ok(self.logger, "Preflight checks passed")

    def _invoke(self, step: str, fn: Callable[..., subprocess.CompletedProcess], *a: Any) -> subprocess.CompletedProcess:
        try:
            return fn(*a)
        except subprocess.TimeoutExpired as e:
            self.logger.error("%s timed out after %ss", step, e.timeout)
            return subprocess.CompletedProcess(e.cmd, 124, stdout="", stderr=f"timed out after {e.timeout}s")
        except OSError as e:
            raise RuntimeUnavailableError(msg=f"wsl.exe failed to start during {step}", cause=e, context={"step": step})

    def _gate(self, err: WslShrinkError, options: ShrinkOptions, result: WorkflowResult, tracker: CheckpointTracker, step: str) -> None:
        """Abort with `err`, or record it and carry on when --force is set."""
        if not options.force:
            raise err
        Log.warn(self.logger, f"{err.user_message(include_context=True)} (continuing: --force)")
        result.errors.append(err)
        tracker.skip(step, f"failed under --force: {err.msg}")

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _run_steps(self, options: ShrinkOptions, tracker: CheckpointTracker, result: WorkflowResult) -> None:
        unit = options.unit_name

        Log.step(self.logger, "Shutting down WSL (all distributions)")
        cp = self._invoke("shutdown", self.runtime.shutdown)
        if _failed(cp):
            raise Fatal(msg="wsl --shutdown failed", context={"rc": cp.returncode, "output": U.one_line_output(cp)})
        tracker.advance(WorkflowCheckpoint.SHUTDOWN_DONE)

        present = self._has_unit(unit)
        Log.trace(self.logger, "unit %s registered=%s", unit, present)

        self._step_export(options, tracker, result, present=present)
        self._step_unregister(options, tracker, result, present=present)
        self._step_delete(options, tracker, result)

        recreated = self._step_recreate(options, tracker, result)
        if recreated:
            self._step_sparse(options, tracker, result)
        else:
            tracker.skip("sparse", "unit was not recreated")
        self._step_trim(options, tracker, result)

        result.completed = recreated
        if recreated:
            tracker.advance(WorkflowCheckpoint.COMPLETE)

    def _has_unit(self, unit: str) -> bool:
        # decides whether the unit's disk gets deleted unexported: a failed listing must abort
        try:
            return self.runtime.has_unit(unit)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise RuntimeUnavailableError(msg="wsl.exe failed to list distributions", cause=e)

    def _step_export(
        self,
        options: ShrinkOptions,
        tracker: CheckpointTracker,
        result: WorkflowResult,
        *,
        present: bool,
    ) -> None:
        if options.skip_export:
            Log.warn(self.logger, "Export skipped (--skip-export): the unit's contents will not be preserved")
            tracker.skip("export", "--skip-export")
            return
        if not present:
            tracker.skip("export", "unit not registered")
            return

        archive = Path(options.export_path)
        if archive.exists():
            # A leftover archive would satisfy the existence check without this run's export.
            self.logger.info("Removing stale export archive %s", archive)
            result.export_seen = True
            U.safe_unlink(archive)

        needed = disk_images.total_size(disk_images.unit_images(disk_images.scan(options.disk_folder)))
        free = self.host.free_bytes(archive.parent)
        if free is not None and free < needed:
            err = ExportError(
                msg="Not enough free space for the export archive",
                context={"path": str(archive), "free": U.human_bytes(free), "needed": U.human_bytes(needed)},
            )
            self._gate(err, options, result, tracker, "export")
            return

        U.ensure_dir(archive.parent)
        Log.step(self.logger, f"Exporting {options.unit_name} to {archive}")
        cp = self._invoke("export", self.runtime.export, options.unit_name, archive)
        if archive.exists():
            result.export_seen = True

        if _failed(cp) or not archive.is_file():
            err = ExportError(
                msg="Export did not produce an archive" if not archive.is_file() else "Export reported failure",
                context={"path": str(archive), "rc": cp.returncode, "output": U.one_line_output(cp)},
            )
            self._gate(err, options, result, tracker, "export")
            return

        size = archive.stat().st_size
        Log.ok(self.logger, f"Exported {U.human_bytes(size)} to {archive}")
        tracker.advance(WorkflowCheckpoint.EXPORT_DONE, archive=str(archive), size=size)

    def _step_unregister(self, options: ShrinkOptions, tracker: CheckpointTracker, result: WorkflowResult, *, present: bool) -> None:
        if not present:
            tracker.skip("unregister", "unit not registered")
            return

        Log.step(self.logger, f"Unregistering {options.unit_name}")
        cp = self._invoke("unregister", self.runtime.unregister, options.unit_name)
        if _failed(cp):
            err = UnregisterError(
                msg=f"wsl --unregister {options.unit_name} failed",
                context={"rc": cp.returncode, "output": U.one_line_output(cp)},
            )
            self._gate(err, options, result, tracker, "unregister")
            return
        tracker.advance(WorkflowCheckpoint.UNREGISTER_DONE)

    def _step_delete(self, options: ShrinkOptions, tracker: CheckpointTracker, result: WorkflowResult) -> None:
        Log.step(self.logger, f"Deleting leftover disk images under {options.disk_folder}")
        report = disk_images.delete_images(self.logger, options.disk_folder, remove=self.host.delete)
        result.deleted = list(report.deleted)
        result.freed_bytes = report.freed_bytes
        result.errors.extend(report.errors)
        tracker.advance(WorkflowCheckpoint.DELETE_DONE, freed=report.freed_bytes, failed=len(report.errors))
        if report.deleted:
            Log.ok(self.logger, f"Freed {U.human_bytes(report.freed_bytes)} from {len(report.deleted)} file(s)")

    def _step_recreate(self, options: ShrinkOptions, tracker: CheckpointTracker, result: WorkflowResult) -> bool:
        Log.step(self.logger, "Starting the container engine")
        try:
            self.engine.restart(self.logger)
            tracker.advance(WorkflowCheckpoint.RESTART_REQUESTED)
        except RestartError as e:
            Log.warn(self.logger, e.user_message(include_context=True))
            result.errors.append(e)
            tracker.skip("restart", e.msg)

        unit = options.unit_name
        Log.step(self.logger, f"Waiting up to {options.wait_timeout_s:.0f}s for {unit} to be recreated")

        def _present() -> bool:
            try:
                return self.runtime.has_unit(unit)
            except (OSError, subprocess.TimeoutExpired, RuntimeUnavailableError) as e:
                self.logger.debug("list failed while waiting: %s", e)
                return False

        with self._wait_display(f"Waiting for {unit}") as tick:
            outcome = wait_until(
                _present,
                timeout_s=options.wait_timeout_s,
                interval_s=options.poll_interval_s,
                clock=self.clock,
                sleep=self.sleep,
                logger=self.logger,
                what=unit,
                on_tick=tick,
            )

        if not outcome.satisfied:
            Log.warn(
                self.logger,
                f"{unit} did not reappear within {options.wait_timeout_s:.0f}s; "
                "start Docker Desktop manually to recreate it",
            )
            return False

        Log.ok(self.logger, f"{unit} is registered again ({outcome.elapsed_s:.0f}s)")
        tracker.advance(WorkflowCheckpoint.UNIT_RECREATED, waited_s=round(outcome.elapsed_s, 1))
        return True

    def _step_sparse(self, options: ShrinkOptions, tracker: CheckpointTracker, result: WorkflowResult) -> None:
        Log.step(self.logger, f"Enabling sparse mode for {options.unit_name}")
        try:
            cp = self.runtime.set_sparse(options.unit_name, True, allow_unsafe=options.allow_unsafe_sparse)
        except (OSError, subprocess.TimeoutExpired) as e:
            cp = subprocess.CompletedProcess([], 1, stdout="", stderr=str(e))

        ok = not _failed(cp)
        tracker.advance(WorkflowCheckpoint.SPARSE_REQUESTED, ok=ok)
        if ok:
            result.sparse_enabled = True
            Log.ok(self.logger, "Sparse mode enabled")
            return

        err = SparseError(msg="Could not enable sparse mode", context={"rc": cp.returncode, "output": U.one_line_output(cp)})
        Log.warn(self.logger, err.user_message(include_context=True))
        result.errors.append(err)

    def _step_trim(self, options: ShrinkOptions, tracker: CheckpointTracker, result: WorkflowResult) -> None:
        if not options.trim:
            tracker.skip("trim", "--no-trim")
            return

        Log.step(self.logger, f"ReTrim on the volume holding {options.disk_folder}")
        try:
            self.host.retrim(options.disk_folder)
            tracker.advance(WorkflowCheckpoint.TRIM_REQUESTED, ok=True)
        except TrimError as e:
            tracker.advance(WorkflowCheckpoint.TRIM_REQUESTED, ok=False)
            Log.warn(self.logger, e.user_message(include_context=True))
            result.errors.append(e)

    # ------------------------------------------------------------------
    # Wrap-up
    # ------------------------------------------------------------------

    def _finish(
        self,
        options: ShrinkOptions,
        tracker: CheckpointTracker,
        result: WorkflowResult,
        *,
        finished: bool,
    ) -> None:
        archive = Path(options.export_path)
        # Interrupted between unregister and recreate: the archive may be the only copy left.
        stranded = (
            not finished
            and tracker.reached(WorkflowCheckpoint.UNREGISTER_DONE)
            and not tracker.reached(WorkflowCheckpoint.UNIT_RECREATED)
        )

        if archive.exists() and (options.keep_export or stranded):
            result.export_kept = archive
            if stranded:
                Log.warn(self.logger, f"Keeping {archive}; restore with: wsl --import {options.unit_name} <dir> {archive}")
        elif result.export_seen or archive.exists():
            try:
                self.host.delete(archive)
            except OSError as e:
                result.errors.append(DeleteError(msg="Could not delete export archive", cause=e, context={"path": str(archive)}))
            if archive.exists():
                Log.warn(self.logger, f"Export archive still present: {archive}")
            else:
                self.logger.info("🗑️  Removed export archive %s", archive)

        after = disk_images.scan(options.disk_folder)
        result.size_after = disk_images.total_size(after)
        own = disk_images.unit_images(after)
        result.sparse_flag = self.host.sparse_flag(own[0].path) if own else None
        result.checkpoint = tracker.current
        result.steps_skipped = tracker.skipped_labels

        self._emit_summary(options, result)

    def _emit_summary(self, options: ShrinkOptions, result: WorkflowResult) -> None:
        Log.banner(self.logger, "Summary")
        self.logger.info("💽 Size before : %s", U.human_bytes(result.size_before))
        self.logger.info("💽 Size after  : %s", U.human_bytes(result.size_after))
        self.logger.info("🧮 Reclaimed   : %s", U.human_bytes(result.reclaimed_bytes))
        self.logger.info("🕳️  Sparse mode : %s", "enabled" if result.sparse_enabled else "not enabled")
        if result.sparse_flag is not None:
            self.logger.info("🕳️  Sparse flag : %s", "set" if result.sparse_flag else "not set")
        self.logger.info("📍 Checkpoint  : %s", result.checkpoint.label)
        for s in result.steps_skipped:
            self.logger.info("⏭️  Skipped     : %s", s)
        for e in result.errors:
            self.logger.warning("⚠️  %s: %s", type(e).__name__, e.user_message(include_context=True))
        if result.export_kept:
            self.logger.info("📦 Export kept : %s", result.export_kept)
        if result.completed:
            Log.ok(self.logger, f"{options.unit_name} shrink complete")
        else:
            Log.warn(self.logger, f"{options.unit_name} shrink did not complete")

    @contextlib.contextmanager
    def _wait_display(self, title: str) -> Iterator[Optional[Callable[[float], None]]]:
        if not self.show_progress:
            yield None
            return
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TimeElapsedColumn(),
            console=Console(stderr=True),
            transient=True,
        ) as progress:
            task_id = progress.add_task(title, total=None)
            yield lambda elapsed: progress.update(task_id, description=f"{title} • {elapsed:.0f}s")
