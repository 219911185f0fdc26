"""Provide the public `taskplain` package exports."""

from __future__ import annotations

from .task_engine.engine import TaskEngine

__all__ = ["TaskEngine"]
