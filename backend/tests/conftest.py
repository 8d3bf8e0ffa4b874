import os
import sys
import pytest

# Ensure the backend root (containing the `chessroom` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from chessroom import create_app, db, socketio

NS = '/ws'


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    GRACE_PERIOD_SEC = 60
    CLOCK_SWEEP_INTERVAL_SEC = 1.0
    ALLOWED_DURATIONS = (3, 5, 7)
    DEFAULT_DURATION_MIN = 5
    CHECKPOINT_ENABLED = True
    CHECKPOINT_ASYNC = False
    CHECKPOINT_CREATE_TABLES = True
    LEGALITY_VERIFIER = 'chessroom.services.rooms.legality:TrustingVerifier'
    MAX_NAME_LENGTH = 32
    MAX_CHAT_LENGTH = 500
    BCRYPT_LOG_ROUNDS = 4


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class ManualSpawner:
    """Collects background tasks so tests decide when timers fire."""

    def __init__(self):
        self.tasks = []

    def __call__(self, fn, *args, **kwargs):
        self.tasks.append((fn, args, kwargs))

    def run_pending(self):
        ran = 0
        while self.tasks:
            fn, args, kwargs = self.tasks.pop(0)
            fn(*args, **kwargs)
            ran += 1
        return ran


def drain(client):
    return client.get_received(NS)


def named(packets, name):
    return [pkt['args'][0] if pkt['args'] else None for pkt in packets if pkt['name'] == name]


def names(packets):
    return [pkt['name'] for pkt in packets]


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def spawner():
    return ManualSpawner()


@pytest.fixture()
def flask_app(clock, spawner):
    application = create_app(TestConfig, clock=clock, spawn=spawner, sleep=lambda seconds: None)
    with application.app_context():
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def manager(flask_app):
    return flask_app.extensions['rooms']


@pytest.fixture()
def connect(flask_app):
    opened = []

    def _connect():
        test_client = socketio.test_client(flask_app, namespace=NS)
        drain(test_client)
        opened.append(test_client)
        return test_client

    yield _connect
    for test_client in opened:
        try:
            if test_client.is_connected(NS):
                test_client.disconnect(namespace=NS)
        except Exception:
            pass


class Table:
    """An admin plus two seated players, optionally with a running match."""

    def __init__(self, connect):
        self.connect = connect
        self.admin = connect()
        self.admin.emit('create_room', {'name': 'Ada'}, namespace=NS)
        created = named(drain(self.admin), 'room_created')[0]
        self.code = created['room_code']
        self.admin_token = created['admin_token']
        self.admin_id = created['player_id']
        self.white, self.white_join = self.join('Wes')
        self.black, self.black_join = self.join('Bea')
        self.admin.emit('assign_seat', {'room_code': self.code, 'player_id': self.white_id, 'seat': 'white'}, namespace=NS)
        self.admin.emit('assign_seat', {'room_code': self.code, 'player_id': self.black_id, 'seat': 'black'}, namespace=NS)
        self.flush()

    @property
    def white_id(self):
        return self.white_join['player_id']

    @property
    def black_id(self):
        return self.black_join['player_id']

    @property
    def clients(self):
        return [self.admin, self.white, self.black]

    def join(self, name, **extra):
        test_client = self.connect()
        payload = {'room_code': self.code, 'name': name}
        payload.update(extra)
        test_client.emit('join_room', payload, namespace=NS)
        joined = named(drain(test_client), 'joined_room')[0]
        return test_client, joined

    def start(self, minutes=5):
        self.admin.emit('start_session', {'room_code': self.code, 'duration_minutes': minutes}, namespace=NS)
        self.flush()

    def move(self, test_client, board_state, move_log='', move=None):
        test_client.emit('submit_move', {
            'room_code': self.code,
            'board_state': board_state,
            'move_log': move_log,
            'move': move,
        }, namespace=NS)

    def flush(self):
        for test_client in self.clients:
            if test_client.is_connected(NS):
                drain(test_client)


@pytest.fixture()
def table(connect):
    return Table(connect)
