"""Work dispatch for pipeline units.

Units are routed by message type to a handler and run on a lane. Each lane
has its own timeout and attempt budget; the large-files lane gets its own
executor so long downloads never starve the default lane.
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Protocol

from knowledge_hub.core.config import Settings
from knowledge_hub.core.logging import get_logger, log_context
from knowledge_hub.pipeline.cancellation import CancellationToken, UnitContext
from knowledge_hub.pipeline.messages import Lane, Message

logger = get_logger(__name__)


@dataclass(slots=True, frozen=True)
class LaneConfig:
    workers: int
    timeout_seconds: float
    max_attempts: int


def lanes_from_settings(settings: Settings) -> dict[Lane, LaneConfig]:
    return {
        Lane.DEFAULT: LaneConfig(
            workers=settings.default_lane_workers,
            timeout_seconds=settings.default_lane_timeout_seconds,
            max_attempts=settings.default_lane_max_attempts,
        ),
        Lane.LARGE_FILES: LaneConfig(
            workers=settings.large_lane_workers,
            timeout_seconds=settings.large_lane_timeout_seconds,
            max_attempts=settings.large_lane_max_attempts,
        ),
    }


class UnitHandler(Protocol):
    def run(self, message: Any, unit: UnitContext) -> Any: ...

    def on_failure(self, message: Any, error: BaseException) -> None: ...


class Router(Protocol):
    def handler_for(self, message: Message) -> UnitHandler: ...

    def token_for(self, message: Message) -> CancellationToken: ...


class Dispatcher(ABC):
    def __init__(self, router: Router, lanes: dict[Lane, LaneConfig]) -> None:
        self.router = router
        self.lanes = lanes

    @abstractmethod
    def dispatch(self, message: Message) -> None: ...

    def join(self) -> None:
        """Block until every dispatched unit, including follow-ups, has finished."""

    def shutdown(self) -> None:
        """Release worker resources."""

    def execute(self, message: Message) -> Any:
        """Run ``message`` within its lane's attempt budget.

        ``on_failure`` runs once after the last attempt fails; the error is
        logged and not re-raised so one bad unit cannot take the worker down.
        """
        handler = self.router.handler_for(message)
        lane = self.lanes[message.lane]
        kind = type(message).__name__
        last_error: BaseException | None = None
        for attempt in range(1, lane.max_attempts + 1):
            unit = UnitContext(
                token=self.router.token_for(message),
                deadline=time.monotonic() + lane.timeout_seconds,
                attempt=attempt,
            )
            try:
                return handler.run(message, unit)
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "Unit attempt failed",
                    extra=log_context(
                        unit=kind,
                        lane=message.lane.value,
                        attempt=attempt,
                        max_attempts=lane.max_attempts,
                        error=str(exc),
                    ),
                )
        if last_error is None:
            return None
        logger.error(
            "Unit failed permanently",
            extra=log_context(unit=kind, lane=message.lane.value, error=str(last_error)),
        )
        try:
            handler.on_failure(message, last_error)
        except Exception:
            logger.exception("Unit failure hook raised", extra=log_context(unit=kind))
        return None


class InlineDispatcher(Dispatcher):
    """Runs units on the calling thread, in dispatch order.

    A unit dispatched from inside another unit is queued and runs after the
    current one returns, the same order a real queue would deliver it.
    """

    def __init__(self, router: Router, lanes: dict[Lane, LaneConfig]) -> None:
        super().__init__(router, lanes)
        self._pending: deque[Message] = deque()
        self._draining = False
        self.dispatched: list[Message] = []

    def dispatch(self, message: Message) -> None:
        self.dispatched.append(message)
        self._pending.append(message)
        if self._draining:
            return
        self._draining = True
        try:
            while self._pending:
                self.execute(self._pending.popleft())
        finally:
            self._draining = False


class ThreadPoolDispatcher(Dispatcher):
    """One ``ThreadPoolExecutor`` per lane."""

    def __init__(self, router: Router, lanes: dict[Lane, LaneConfig]) -> None:
        super().__init__(router, lanes)
        self._executors = {
            lane: ThreadPoolExecutor(max_workers=config.workers, thread_name_prefix=f"kh-{lane.value}")
            for lane, config in lanes.items()
        }
        self._inflight: set[Future[Any]] = set()
        self._lock = threading.Lock()

    def dispatch(self, message: Message) -> None:
        future = self._executors[message.lane].submit(self.execute, message)
        with self._lock:
            self._inflight.add(future)
        future.add_done_callback(self._forget)

    def _forget(self, future: Future[Any]) -> None:
        with self._lock:
            self._inflight.discard(future)

    def join(self) -> None:
        while True:
            with self._lock:
                pending = list(self._inflight)
            if not pending:
                return
            for future in pending:
                future.result()

    def shutdown(self) -> None:
        for executor in self._executors.values():
            executor.shutdown(wait=True)


__all__ = [
    "LaneConfig",
    "lanes_from_settings",
    "UnitHandler",
    "Router",
    "Dispatcher",
    "InlineDispatcher",
    "ThreadPoolDispatcher",
]
