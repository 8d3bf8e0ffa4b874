import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple

ADMIN_ABSENCE = 'admin-absence'
SEAT_ABANDONMENT = 'seat-abandonment'

TimerKey = Tuple[str, str, Optional[str]]


@dataclass(eq=False)
class GraceTimer:
    key: TimerKey
    deadline: float
    callback: Callable[[], None] = field(repr=False)
    cancelled: bool = False
    fired: bool = False

    @property
    def room_code(self) -> str:
        return self.key[0]


class GraceTimerManager:
    """Grace timers keyed by (room, kind, player).

    - At most one live timer per key; arming again replaces the old one
    - Firing takes the room lock, then checks the timer is still the live
      one for its key. A cancel that got the lock first wins; once the
      callback has started it runs to completion before anyone else
      touches the room
    - Callers cancel while holding the same room lock
    """

    def __init__(self, lock_for, spawn, sleep=time.sleep, clock=time.time, logger=None,
                 grace_period: float = 60.0):
        self._lock_for = lock_for
        self._spawn = spawn
        self._sleep = sleep
        self._clock = clock
        self._logger = logger
        self.grace_period = grace_period
        self._live: Dict[TimerKey, GraceTimer] = {}
        self._guard = threading.Lock()

    def _log(self, msg: str) -> None:
        if self._logger is not None:
            self._logger.info(msg)

    def arm(self, room_code: str, kind: str, player_id: Optional[str], callback: Callable[[], None],
            delay: Optional[float] = None) -> GraceTimer:
        delay = self.grace_period if delay is None else delay
        key = (room_code, kind, player_id)
        timer = GraceTimer(key=key, deadline=self._clock() + delay, callback=callback)
        with self._guard:
            previous = self._live.get(key)
            if previous is not None:
                previous.cancelled = True
            self._live[key] = timer
        self._log(f"[timer-set] room={room_code} kind={kind} player={player_id} delay={delay}s")
        self._spawn(self._run, timer)
        return timer

    def pending(self, room_code: str, kind: str, player_id: Optional[str] = None) -> Optional[GraceTimer]:
        with self._guard:
            return self._live.get((room_code, kind, player_id))

    def cancel(self, room_code: str, kind: str, player_id: Optional[str] = None) -> bool:
        with self._guard:
            timer = self._live.pop((room_code, kind, player_id), None)
        if timer is None:
            return False
        timer.cancelled = True
        self._log(f"[timer-cancel] room={room_code} kind={kind} player={player_id}")
        return True

    def cancel_room(self, room_code: str) -> int:
        with self._guard:
            keys = [key for key in self._live if key[0] == room_code]
            timers = [self._live.pop(key) for key in keys]
        for timer in timers:
            timer.cancelled = True
        return len(timers)

    def _run(self, timer: GraceTimer) -> None:
        remaining = timer.deadline - self._clock()
        if remaining > 0:
            self._sleep(remaining)
        self.fire(timer)

    def fire(self, timer: GraceTimer) -> bool:
        """Run the timer callback unless it was cancelled or replaced first."""
        room_code, kind, player_id = timer.key
        if timer.cancelled:
            self._log(f"[timer-abort] room={room_code} kind={kind} player={player_id}")
            return False
        with self._lock_for(room_code):
            with self._guard:
                if timer.cancelled or self._live.get(timer.key) is not timer:
                    live = False
                else:
                    del self._live[timer.key]
                    timer.fired = True
                    live = True
            if not live:
                self._log(f"[timer-abort] room={room_code} kind={kind} player={player_id}")
                return False
            self._log(f"[timer-fire] room={room_code} kind={kind} player={player_id}")
            try:
                timer.callback()
            except Exception:
                if self._logger is not None:
                    self._logger.exception(f"[timer-fault] room={room_code} kind={kind} player={player_id}")
            return True
