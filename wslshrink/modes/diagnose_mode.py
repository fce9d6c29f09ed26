# SPDX-License-Identifier: LGPL-3.0-or-later
# wslshrink/modes/diagnose_mode.py
from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Any, Dict, List

from .. import disk_images
from ..config.options import ShrinkOptions
from ..core.exceptions import RuntimeUnavailableError
from ..core.utils import U
from ..runtime.host import HostSystem
from ..runtime.wsl import WslRuntime


class DiagnoseMode:
    """
    diagnose mode:
      - read-only: lists units, image sizes, sparse flags, engine presence and free space
      - never shuts anything down, deletes or starts anything
      - emits one JSON document on stdout
    """

    def __init__(self, logger: logging.Logger, runtime: WslRuntime, host: HostSystem, options: ShrinkOptions):
        self.logger = logger
        self.runtime = runtime
        self.host = host
        self.options = options

    def _units(self) -> Dict[str, Any]:
        if not self.runtime.available():
            return {"available": False, "units": [], "target_registered": False}
        try:
            units = self.runtime.list_units(verbose=True)
        except (OSError, subprocess.TimeoutExpired, RuntimeUnavailableError) as e:
            self.logger.warning("Could not list WSL distributions: %s", e)
            units = []
        want = self.options.unit_name.lower()
        return {
            "available": True,
            "units": units,
            "target_registered": any(u.lower() == want for u in units),
        }

    def _images(self) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for rec in disk_images.scan(self.options.disk_folder):
            d = rec.to_dict()
            d["size_human"] = U.human_bytes(rec.size_bytes)
            d["sparse"] = self.host.sparse_flag(rec.path)
            out.append(d)
        return out

    def collect(self) -> Dict[str, Any]:
        images = self._images()
        total = sum(int(i["size_bytes"]) for i in images)
        folder = Path(self.options.disk_folder)
        free = self.host.free_bytes(folder)
        return {
            "mode": "diagnose",
            "unit_name": self.options.unit_name,
            "wsl": self._units(),
            "disk_folder": str(folder),
            "images": images,
            "images_total_bytes": total,
            "engine": {
                "path": str(self.options.engine_path),
                "installed": Path(self.options.engine_path).is_file(),
                "service": self.options.engine_service,
            },
            "volume_free_bytes": free,
            "elevated": self.host.is_elevated(),
        }

    def run(self) -> Dict[str, Any]:
        report = self.collect()
        print(U.json_dump(report))
        return report
