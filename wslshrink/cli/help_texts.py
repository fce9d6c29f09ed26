# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# wslshrink/cli/help_texts.py
from __future__ import annotations

# Pure help text for the argparse epilog. No imports beyond __future__.

YAML_EXAMPLE = r"""# wslshrink configuration (YAML)
#
# Run (elevated PowerShell):
#   wslshrink --config shrink.yaml
#
# Merge multiple configs (later overrides earlier, CLI flags override both):
#   wslshrink --config base.yaml --config laptop.yaml --force
#
# Keys use the long option names, dashes or underscores:
unit_name: docker-desktop
export_path: D:\backups\docker-desktop.tar   # needs free space >= current image size
disk_folder: C:\Users\me\AppData\Local\Docker\wsl
skip_export: false       # true = nothing is preserved before unregister
force: false             # true = export/unregister failures do not abort
keep_export: false       # true = keep the archive after the run
wait_timeout: 180        # seconds to wait for Docker Desktop to recreate the unit
poll_interval: 3
no_trim: false
journal: C:\Temp\wslshrink-journal.json
"""

WORKFLOW_SUMMARY = r"""Workflow (each step re-reads the disk images it touches):
  1. wsl --shutdown                      (stops EVERY distribution, not just the target)
  2. wsl --export <unit> <export-path>   (skipped with --skip-export; aborts unless --force)
  3. wsl --unregister <unit>             (aborts unless --force)
  4. delete ext4.vhdx / docker_data.vhdx under --disk-folder
  5. start Docker Desktop (service start as fallback)
  6. wait for <unit> to be registered again
  7. wsl --manage <unit> --set-sparse true --allow-unsafe
  8. Optimize-Volume -ReTrim on the whole volume holding --disk-folder

Exit codes: 0 done (soft failures included), 1 aborted, 2 bad arguments, 130 interrupted.
"""
