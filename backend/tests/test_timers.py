import logging
import threading

from conftest import FakeClock, ManualSpawner
from chessroom.services.rooms.timers import ADMIN_ABSENCE, SEAT_ABANDONMENT, GraceTimerManager


def make_timers():
    clock = FakeClock()
    spawner = ManualSpawner()
    timers = GraceTimerManager(
        lambda code: threading.RLock(), spawner, sleep=lambda seconds: None, clock=clock,
        logger=logging.getLogger('test-timers'), grace_period=60,
    )
    return timers, spawner, clock


def test_timer_fires_after_grace():
    timers, spawner, clock = make_timers()
    fired = []
    timer = timers.arm('123456', ADMIN_ABSENCE, None, lambda: fired.append('closed'))
    assert timer.deadline == clock.now + 60
    assert timers.pending('123456', ADMIN_ABSENCE) is timer
    spawner.run_pending()
    assert fired == ['closed']
    assert timer.fired
    assert timers.pending('123456', ADMIN_ABSENCE) is None


def test_cancel_before_fire_wins():
    timers, spawner, _ = make_timers()
    fired = []
    timers.arm('123456', SEAT_ABANDONMENT, 'p1', lambda: fired.append('p1'))
    assert timers.cancel('123456', SEAT_ABANDONMENT, 'p1') is True
    assert timers.cancel('123456', SEAT_ABANDONMENT, 'p1') is False
    spawner.run_pending()
    assert fired == []


def test_rearming_replaces_previous_timer():
    timers, spawner, _ = make_timers()
    fired = []
    first = timers.arm('123456', SEAT_ABANDONMENT, 'p1', lambda: fired.append('first'))
    timers.arm('123456', SEAT_ABANDONMENT, 'p1', lambda: fired.append('second'))
    assert first.cancelled
    spawner.run_pending()
    assert fired == ['second']


def test_keys_are_independent():
    timers, spawner, _ = make_timers()
    fired = []
    timers.arm('123456', SEAT_ABANDONMENT, 'p1', lambda: fired.append('p1'))
    timers.arm('123456', SEAT_ABANDONMENT, 'p2', lambda: fired.append('p2'))
    timers.cancel('123456', SEAT_ABANDONMENT, 'p1')
    spawner.run_pending()
    assert fired == ['p2']


def test_cancel_room_drops_all_its_timers():
    timers, spawner, _ = make_timers()
    fired = []
    timers.arm('111111', ADMIN_ABSENCE, None, lambda: fired.append('a'))
    timers.arm('111111', SEAT_ABANDONMENT, 'p1', lambda: fired.append('b'))
    timers.arm('222222', ADMIN_ABSENCE, None, lambda: fired.append('c'))
    assert timers.cancel_room('111111') == 2
    spawner.run_pending()
    assert fired == ['c']


def test_cancel_after_fire_started_does_not_tear_callback():
    timers, spawner, _ = make_timers()
    seen = []

    def callback():
        # A reconnect arriving mid-callback finds nothing left to cancel
        seen.append(timers.cancel('123456', SEAT_ABANDONMENT, 'p1'))
        seen.append('finished')

    timers.arm('123456', SEAT_ABANDONMENT, 'p1', callback)
    spawner.run_pending()
    assert seen == [False, 'finished']


def test_callback_fault_is_logged_not_raised(caplog):
    timers, spawner, _ = make_timers()

    def explode():
        raise RuntimeError('boom')

    timers.arm('123456', ADMIN_ABSENCE, None, explode)
    with caplog.at_level(logging.ERROR, logger='test-timers'):
        spawner.run_pending()
    assert any('[timer-fault]' in rec.getMessage() for rec in caplog.records)
