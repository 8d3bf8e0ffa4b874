import threading

from conftest import NS, drain, named
from chessroom.errors import OutOfTurn
from chessroom.services.rooms.checkpoint import NullCheckpoint
from chessroom.services.rooms.session import APPLIED, describe_result
from chessroom.services.rooms.state import GameSession, Identity, Room


def test_clocks_at_only_runs_side_to_move():
    session = GameSession.start(5, now=100.0)
    assert session.clocks_at(112.0) == (288.0, 300.0)
    session.turn = 'black'
    assert session.clocks_at(112.0) == (300.0, 288.0)
    # Viewing the clock does not commit the deduction
    assert session.white_time == 300.0 and session.black_time == 300.0


def test_charge_mover_commits_and_restamps():
    session = GameSession.start(3, now=0.0)
    assert session.charge_mover(30.0) == 150.0
    assert session.last_tick == 30.0
    assert session.black_time == 180.0


def test_clocks_never_show_negative():
    session = GameSession.start(3, now=0.0)
    assert session.clocks_at(500.0) == (0.0, 180.0)


def test_room_problems_flag_empty_seat_in_active_match():
    room = Room(code='123456', admin_token_hash='x')
    room.identities['a'] = Identity(player_id='a', token='ta', name='A')
    room.seats['white'] = 'a'
    assert room.problems() == []
    room.session = GameSession.start(5, now=0.0)
    assert room.problems() == ['black seat empty during active session']
    room.seats['black'] = 'ghost'
    assert room.problems() == ['black occupant ghost is not in the room']


def test_describe_result():
    assert describe_result('timeout', 'black') == "Time's up! Black wins!"
    assert describe_result('resignation', 'white') == 'Black resigned. White wins!'
    assert describe_result('agreement', 'draw') == 'Game ended in a draw (mutual agreement)'
    assert describe_result('threefold_repetition', 'draw') == 'Game ended in a draw (threefold repetition)'


def test_inconsistent_room_heals_itself(table, manager, caplog):
    table.start(5)
    room = manager.registry.get(table.code)
    # Corrupt the room behind the manager's back
    room.seats['black'] = None
    table.white.emit('send_chat', {'room_code': table.code, 'message': 'hello?'}, namespace=NS)
    received = drain(table.white)
    ended = named(received, 'session_ended')
    assert ended[0]['reason'] == 'inconsistent'
    assert ended[0]['winner'] == 'white'
    assert not room.session_active
    assert any('[inconsistent-state]' in rec.getMessage() for rec in caplog.records)


def test_active_session_always_has_both_seats(table, manager, clock):
    room = manager.registry.get(table.code)
    table.start(5)
    checks = [
        lambda: table.move(table.white, 'p1', 'e4'),
        lambda: table.admin.emit('assign_seat', {'room_code': table.code, 'player_id': table.admin_id,
                                                 'seat': 'white'}, namespace=NS),
        lambda: table.admin.emit('vacate_seat', {'room_code': table.code, 'seat': 'black'}, namespace=NS),
        lambda: table.white.emit('resign', table.code, namespace=NS),
    ]
    for step in checks:
        clock.advance(1)
        step()
        assert room.problems() == []
        if room.session_active:
            assert room.seats['white'] and room.seats['black']


def test_charge_mover_never_stores_negative_time():
    session = GameSession.start(3, now=0.0)
    assert session.charge_mover(181.0) == 0.0
    assert session.white_time == 0.0
    assert session.to_dict()['white_time'] == 0.0


def test_resignation_charges_the_side_to_move(table, clock, manager):
    table.start(5)
    clock.advance(20)
    table.white.emit('resign', table.code, namespace=NS)
    ended = named(drain(table.black), 'session_ended')[0]
    assert ended['white_time'] == 280.0
    assert ended['black_time'] == 300.0
    clock.advance(30)
    lobby = manager.public_view(table.code)
    assert lobby['session']['white_time'] == 280.0


def quiet(manager, monkeypatch):
    """Run manager events from plain threads without Socket.IO traffic or storage writes."""
    monkeypatch.setattr(manager.broadcaster, 'broadcast', lambda *args, **kwargs: None)
    monkeypatch.setattr(manager.broadcaster, 'unicast', lambda *args, **kwargs: None)
    monkeypatch.setattr(manager.writer, 'checkpoint', NullCheckpoint())


def test_simultaneous_moves_charge_the_clock_once(table, clock, manager, monkeypatch):
    table.start(5)
    quiet(manager, monkeypatch)
    room = manager.registry.get(table.code)
    white_sid = room.identity(table.white_id).sid
    clock.advance(10)

    results, errors = [], []
    go = threading.Event()

    def submit():
        go.wait()
        try:
            results.append(manager.submit_move(white_sid, table.code, 'p1', 'e4', 'e4'))
        except OutOfTurn:
            errors.append('out-of-turn')

    threads = [threading.Thread(target=submit) for _ in range(8)]
    for thread in threads:
        thread.start()
    go.set()
    for thread in threads:
        thread.join(timeout=5)

    assert results == [APPLIED]
    assert len(errors) == 7
    assert room.session.white_time == 290.0
    assert room.session.black_time == 300.0
    assert room.session.turn == 'black'


def test_busy_room_does_not_block_other_rooms(table, manager, connect, monkeypatch):
    other = connect()
    other.emit('create_room', {'name': 'Olga'}, namespace=NS)
    other_code = named(drain(other), 'room_created')[0]['room_code']
    quiet(manager, monkeypatch)
    other_room = manager.registry.get(other_code)
    busy_room = manager.registry.get(table.code)

    def highlight(room, color):
        manager.set_highlight(room.admin_sid, room.code, room.admin_player_id, color)

    with manager.registry.lock_for(table.code):
        blocked = threading.Thread(target=highlight, args=(busy_room, '#111111'))
        free = threading.Thread(target=highlight, args=(other_room, '#222222'))
        blocked.start()
        free.start()
        free.join(timeout=5)
        assert not free.is_alive()
        assert other_room.identity(other_room.admin_player_id).highlight == '#222222'
        blocked.join(timeout=0.2)
        assert blocked.is_alive()
    blocked.join(timeout=5)
    assert busy_room.identity(busy_room.admin_player_id).highlight == '#111111'
