"""
Inter-call pacing.

The upstream degrades silently under sustained call rates instead of
rejecting, so every collector sleeps through `delay` between sequential
requests. The client itself never sleeps.
"""

from __future__ import annotations

import time


def delay(ms: int) -> None:
    """Block for `ms` milliseconds (no-op for non-positive values)."""
    if ms > 0:
        time.sleep(ms / 1000)
