# SPDX-License-Identifier: LGPL-3.0-or-later
# wslshrink/core/__init__.py
from .checkpoints import CheckpointTracker, WorkflowCheckpoint
from .exceptions import WslShrinkError, Fatal
from .utils import U

__all__ = ["CheckpointTracker", "WorkflowCheckpoint", "WslShrinkError", "Fatal", "U"]
