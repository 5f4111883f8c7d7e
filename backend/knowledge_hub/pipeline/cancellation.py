"""Cooperative cancellation and unit deadlines."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable

from knowledge_hub.core.errors import UnitTimeout


class CancellationToken:
    """Signalled in-process by ``cancel()``; ``probe`` lets another process cancel too."""

    def __init__(self, probe: Callable[[], bool] | None = None) -> None:
        self._event = threading.Event()
        self._probe = probe

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._probe is not None and self._probe():
            self._event.set()
            return True
        return False


@dataclass(slots=True)
class UnitContext:
    """Per-attempt execution context handed to every unit."""

    token: CancellationToken = field(default_factory=CancellationToken)
    deadline: float | None = None
    attempt: int = 1

    def check_deadline(self) -> None:
        if self.deadline is not None and time.monotonic() > self.deadline:
            raise UnitTimeout(f"unit exceeded its deadline on attempt {self.attempt}")


__all__ = ["CancellationToken", "UnitContext"]
