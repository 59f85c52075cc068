"""Template compilation and multi-channel delivery orchestration engine."""

from __future__ import annotations

__version__ = "0.1.0"
