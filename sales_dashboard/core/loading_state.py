"""
Loading State Coordinator

Turns several independent "is this fetch loading" flags into one
show-loading decision with flicker suppression: once shown, the loading
indicator stays up for at least ``minimum_loading_time`` seconds.

The coordinator is an explicit state machine owning at most one timer:

    IDLE -> LOADING -> SETTLING_MINIMUM_TIME -> DONE
                ^               |
                +---------------+  (a flag turns true again)
"""
import time
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Optional, Set

logger = logging.getLogger(__name__)

Scheduler = Callable[[float, Callable[[], None]], Any]


class LoadingPhase(Enum):
    """Phases of one loading cycle."""
    IDLE = "idle"
    LOADING = "loading"
    SETTLING_MINIMUM_TIME = "settling_minimum_time"
    DONE = "done"


@dataclass(frozen=True)
class LoadingSnapshot:
    """What the UI should show right now."""
    show_loading: bool
    progress: float
    phase: LoadingPhase
    completed_operations: FrozenSet[str] = frozenset()


def event_loop_scheduler(delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
    """Schedule on the running event loop. Returns a handle with cancel()."""
    return asyncio.get_running_loop().call_later(delay, callback)


class LoadingStateCoordinator:
    """
    Aggregate loading flags into a single indicator.

    Usage:
        loading = LoadingStateCoordinator(minimum_loading_time=0.5)
        loading.observe({"current-data": True, "chart-data": True})
        loading.observe({"current-data": False, "chart-data": True})   # progress 50
        loading.observe({"current-data": False, "chart-data": False})  # still shown until 0.5s
    """

    def __init__(
        self,
        minimum_loading_time: float = 0.5,
        settle_delay: float = 0.05,
        clock: Callable[[], float] = time.monotonic,
        scheduler: Optional[Scheduler] = None,
        on_change: Optional[Callable[[LoadingSnapshot], None]] = None,
    ):
        self.minimum_loading_time = minimum_loading_time
        self.settle_delay = settle_delay
        self._clock = clock
        self._scheduler = scheduler or event_loop_scheduler
        self._on_change = on_change

        self.phase = LoadingPhase.IDLE
        self.started_at: Optional[float] = None
        # Operations seen loading in this cycle; only these can complete
        self._active: Set[str] = set()
        self._completed: Set[str] = set()
        self._timer = None
        # Bumped on every new cycle so a timer from an old cycle is a no-op
        self._cycle = 0
        self._closed = False

    @classmethod
    def from_config(cls, loading_config, **kwargs) -> "LoadingStateCoordinator":
        return cls(
            minimum_loading_time=loading_config.minimum_loading_time,
            settle_delay=loading_config.settle_delay,
            **kwargs,
        )

    @property
    def show_loading(self) -> bool:
        return self.phase in (LoadingPhase.LOADING, LoadingPhase.SETTLING_MINIMUM_TIME)

    @property
    def progress(self) -> float:
        if self.phase == LoadingPhase.IDLE:
            return 0.0
        if self.phase == LoadingPhase.DONE or not self._active:
            return 100.0
        return len(self._completed) / len(self._active) * 100

    @property
    def has_pending_timer(self) -> bool:
        return self._timer is not None

    def snapshot(self) -> LoadingSnapshot:
        return LoadingSnapshot(
            show_loading=self.show_loading,
            progress=self.progress,
            phase=self.phase,
            completed_operations=frozenset(self._completed),
        )

    def observe(self, flags: Dict[str, bool]) -> LoadingSnapshot:
        """
        Feed the current per-operation loading flags.

        Returns:
            The resulting snapshot
        """
        if self._closed:
            return self.snapshot()

        if any(flags.values()):
            if self.phase != LoadingPhase.LOADING:
                self._start_cycle()
            self._active.update(name for name, loading in flags.items() if loading)
            self._completed.update(
                name for name, loading in flags.items() if not loading and name in self._active
            )
        elif self.phase == LoadingPhase.LOADING:
            self._completed.update(self._active)
            self._settle()

        snapshot = self.snapshot()
        self._notify(snapshot)
        return snapshot

    def _start_cycle(self) -> None:
        if self.phase == LoadingPhase.SETTLING_MINIMUM_TIME:
            logger.debug("Operation restarted while settling, cancelling pending flip")
        self._cancel_timer()
        self._cycle += 1
        self.phase = LoadingPhase.LOADING
        self.started_at = self._clock()
        self._active = set()
        self._completed = set()
        logger.debug(f"Loading cycle {self._cycle} started")

    def _settle(self) -> None:
        elapsed = self._clock() - self.started_at
        if elapsed < self.minimum_loading_time:
            remaining = self.minimum_loading_time - elapsed
            logger.debug(f"Enforcing minimum loading time (+{remaining:.3f}s)")
            self._schedule(remaining)
        elif self.settle_delay > 0:
            self._schedule(self.settle_delay)
        else:
            self._finish(self._cycle)

    def _schedule(self, delay: float) -> None:
        self._cancel_timer()
        self.phase = LoadingPhase.SETTLING_MINIMUM_TIME
        cycle = self._cycle
        self._timer = self._scheduler(delay, lambda: self._finish(cycle))

    def _finish(self, cycle: int) -> None:
        if cycle != self._cycle or self._closed:
            return
        self._timer = None
        self.phase = LoadingPhase.DONE
        elapsed = self._clock() - self.started_at if self.started_at is not None else 0.0
        logger.debug(f"Loading cycle {cycle} done after {elapsed:.3f}s")
        self._notify(self.snapshot())

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _notify(self, snapshot: LoadingSnapshot) -> None:
        if self._on_change is not None:
            self._on_change(snapshot)

    def close(self) -> None:
        """Cancel any pending timer. Further observations are ignored."""
        self._cancel_timer()
        self._closed = True
