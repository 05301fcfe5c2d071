"""Runtime module: settlement, futures, capture and the child process collaborator.

This module provides the building blocks the launch adapters compose:
single-settlement futures carrying a process handle, per-stream output
capture, error normalization and an event-emitting asyncio child process.
"""

from __future__ import annotations

from .capture import CaptureBuffer, CapturePolicy
from .child_process import ChildProcess, OutputStream, exec_command, exec_file, fork, spawn
from .future import ProcessFuture
from .settlement import SettlementCell, SettlementState

__all__ = [
    "CaptureBuffer",
    "CapturePolicy",
    "ChildProcess",
    "OutputStream",
    "ProcessFuture",
    "SettlementCell",
    "SettlementState",
    "exec_command",
    "exec_file",
    "fork",
    "spawn",
]
