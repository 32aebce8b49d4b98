"""
Progress reporting for long analyses.

ProgressReporter turns phase-local progress into an overall percentage that
never goes backwards and never leaves the phase's range. TerminalProgress is
a callback that renders it with tqdm (TTY only).
"""

from __future__ import annotations

import logging
import sys
import threading
from typing import Any, Callable, Dict, Optional, Tuple

from tqdm import tqdm

ProgressCallback = Callable[[int, str, str], None]

PHASES: Dict[str, Tuple[int, int]] = {
    "preparing": (0, 5),
    "rows": (5, 85),
    "orphans": (85, 95),
    "completed": (100, 100),
}


class ProgressReporter:
    """Monotonic, thread-safe wrapper around a progress callback."""

    def __init__(
        self,
        callback: Optional[ProgressCallback] = None,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        self._callback = callback
        self._log = logger
        self._lock = threading.Lock()
        self._last = -1

    @property
    def last(self) -> int:
        return self._last

    def phase(self, phase: str, fraction: float = 0.0, message: str = "") -> None:
        """Report `fraction` (0..1) of `phase`, mapped into its reserved range."""
        low, high = PHASES[phase]
        fraction = min(1.0, max(0.0, fraction))
        self.report(int(low + (high - low) * fraction), phase, message, upper=high)

    def report(self, percent: int, phase: str, message: str = "", *, upper: int = 100) -> None:
        with self._lock:
            percent = min(max(percent, self._last, 0), upper, 100)
            if percent == self._last and phase != "completed":
                return
            self._last = percent
            if self._callback is None:
                return
            try:
                self._callback(percent, phase, message)
            except Exception as exc:
                if self._log is not None:
                    self._log.warning("Progress callback failed: %s", exc)


def is_tty_enabled() -> bool:
    return sys.stderr.isatty()


class TerminalProgress:
    """Callable progress sink drawing a single tqdm bar; silent off-TTY."""

    def __init__(self, *, description: str = "Analyzing", enabled: Optional[bool] = None) -> None:
        self.enabled = is_tty_enabled() if enabled is None else enabled
        self.pbar: Any = None
        if self.enabled:
            self.pbar = tqdm(total=100, desc=description, unit="%", ncols=80, ascii=True, leave=True)

    def __call__(self, percent: int, phase: str, message: str) -> None:
        if self.pbar is None:
            return
        self.pbar.update(max(0, percent - self.pbar.n))
        self.pbar.set_postfix(phase=phase)

    def close(self) -> None:
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> "TerminalProgress":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
