# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# wslshrink/orchestrator/__init__.py
"""
Shrink workflow orchestration.
"""

from .orchestrator import ShrinkOrchestrator, WorkflowResult

__all__ = ["ShrinkOrchestrator", "WorkflowResult"]
