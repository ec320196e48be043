"""Running-timer display: elapsed time, a one-second ticker and formatting."""

from datetime import datetime
from typing import Any, Callable, Optional

from logger import log
from models import ActiveTimer
from store import AppState


def elapsed_ms(timer: Optional[ActiveTimer], now: Optional[datetime] = None) -> int:
    """Milliseconds the timer has been running (0 when there is no timer)."""
    if timer is None:
        return 0
    now = now or datetime.now()
    return max(0, int((now - timer.start).total_seconds() * 1000))


class TimerTicker:
    """Calls ``on_tick`` with the elapsed time about once a second while a timer runs.

    Scheduling goes through ``schedule(delay_ms, callback) -> handle`` and
    ``cancel(handle)``, which is the shape of tkinter's ``after`` and
    ``after_cancel``. The ticker only reads state; call ``sync()`` after every
    state change so it starts or stops with the timer.
    """

    def __init__(
        self,
        get_state: Callable[[], AppState],
        schedule: Callable[[int, Callable[[], None]], Any],
        cancel: Callable[[Any], None],
        on_tick: Callable[[str], None],
        interval_ms: int = 1000,
        clock: Callable[[], datetime] = datetime.now
    ):
        self._get_state = get_state
        self._schedule = schedule
        self._cancel = cancel
        self.on_tick = on_tick
        self.interval_ms = interval_ms
        self._clock = clock
        self._handle = None

    @property
    def active(self) -> bool:
        return self._handle is not None

    def sync(self, state: Optional[AppState] = None):
        """Start ticking if a timer is running, stop if not."""
        state = state if state is not None else self._get_state()
        if state.running_timer is not None and self._handle is None:
            log.debug("Ticker started")
            self._tick()
        elif state.running_timer is None and self._handle is not None:
            self.stop()

    def stop(self):
        if self._handle is not None:
            self._cancel(self._handle)
            self._handle = None
            log.debug("Ticker stopped")

    def _tick(self):
        self._handle = None
        timer = self._get_state().running_timer
        if timer is None:
            return
        self.on_tick(format_seconds(elapsed_ms(timer, self._clock()) // 1000))
        self._handle = self._schedule(self.interval_ms, self._tick)


def format_seconds(seconds: int) -> str:
    """Format seconds as HH:MM:SS."""
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def format_hours(hours: float) -> str:
    """Format hours as X.XX hrs."""
    return f"{hours:.2f} hrs"


def format_currency(amount: float) -> str:
    """Format amount as currency."""
    return f"${amount:,.2f}"
