# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# wslshrink/disk_images.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Sequence, Tuple

from .core.exceptions import DeleteError
from .core.utils import U

# Relative to the Docker Desktop WSL folder. Older installs keep ext4.vhdx at the top level
# (docker-desktop-data), newer ones split it into main/ and data/ or use docker_data.vhdx.
KNOWN_IMAGE_NAMES: Tuple[str, ...] = (
    "ext4.vhdx",
    "docker_data.vhdx",
    "data/ext4.vhdx",
    "main/ext4.vhdx",
)

# Docker Desktop attaches this as a separate data disk; `wsl --export` of a unit never includes it.
DATA_DISK_NAMES: Tuple[str, ...] = ("docker_data.vhdx",)


@dataclass(frozen=True)
class DiskImageRecord:
    name: str
    path: Path
    size_bytes: int

    def to_dict(self) -> Dict[str, object]:
        return {"name": self.name, "path": str(self.path), "size_bytes": self.size_bytes}


def scan(folder: Path, names: Sequence[str] = KNOWN_IMAGE_NAMES) -> List[DiskImageRecord]:
    """Read the known image files under `folder` as they are on disk right now."""
    out: List[DiskImageRecord] = []
    for name in names:
        p = Path(folder) / name
        if not p.is_file():
            continue
        size = U.file_size(p)
        if size is None:
            continue
        out.append(DiskImageRecord(name=name, path=p, size_bytes=size))
    return out


def total_size(records: Iterable[DiskImageRecord]) -> int:
    return sum(r.size_bytes for r in records)


def unit_images(records: Iterable[DiskImageRecord]) -> List[DiskImageRecord]:
    """The records that back the WSL unit itself (what an export has to hold)."""
    return [r for r in records if r.name not in DATA_DISK_NAMES]


@dataclass
class DeletionReport:
    deleted: List[DiskImageRecord] = field(default_factory=list)
    errors: List[DeleteError] = field(default_factory=list)

    @property
    def freed_bytes(self) -> int:
        return total_size(self.deleted)


def delete_images(
    logger: logging.Logger,
    folder: Path,
    *,
    names: Sequence[str] = KNOWN_IMAGE_NAMES,
    remove: Callable[[Path], None] = U.safe_unlink,
) -> DeletionReport:
    """
    Delete every known image under `folder`, one file at a time.

    A file counts as freed only if it existed right before its delete call and is gone
    right after. Failures are collected per file and never stop the loop.
    """
    report = DeletionReport()
    for rec in scan(folder, names):
        cause = None
        try:
            remove(rec.path)
        except OSError as e:
            cause = e

        if rec.path.exists():
            err = DeleteError(
                msg=f"Could not delete {rec.path}",
                cause=cause,
                context={"path": str(rec.path), "size": rec.size_bytes, "error": str(cause) if cause else "still present"},
            )
            logger.warning("⚠️  %s", err.user_message(include_context=True))
            report.errors.append(err)
            continue

        logger.info("🗑️  Deleted %s (%s)", rec.path, U.human_bytes(rec.size_bytes))
        report.deleted.append(rec)

    return report
