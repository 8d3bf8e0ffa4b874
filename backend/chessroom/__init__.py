from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import atexit
import click
import time
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
migrate = Migrate()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)


def get_rooms():
    """The RoomManager bound to the current app."""
    from flask import current_app
    return current_app.extensions['rooms']


def create_app(config_class=Config, clock=None, spawn=None, sleep=None):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from chessroom.main import main
    flask_app.register_blueprint(main)

    from chessroom.api.rooms import rooms
    flask_app.register_blueprint(rooms, url_prefix='/api/rooms')

    from chessroom.services.rooms import RoomManager
    from chessroom.services.rooms.checkpoint import NullCheckpoint, SqlCheckpoint
    from chessroom.services.rooms.legality import load_verifier
    import chessroom.models  # noqa: F401

    checkpoint = NullCheckpoint()
    if flask_app.config.get('CHECKPOINT_ENABLED', True):
        checkpoint = SqlCheckpoint(flask_app)
        if flask_app.config.get('CHECKPOINT_CREATE_TABLES', True):
            try:
                with flask_app.app_context():
                    db.create_all()
            except Exception as exc:
                flask_app.logger.warning(f"[checkpoint-fail] could not create tables: {exc}")

    manager = RoomManager(
        socketio,
        bcrypt,
        flask_app.logger,
        flask_app.config,
        clock=clock or time.time,
        spawn=spawn,
        sleep=sleep,
        checkpoint=checkpoint,
        verifier=load_verifier(flask_app.config['LEGALITY_VERIFIER']),
    )
    flask_app.extensions['rooms'] = manager
    manager.restore()

    from chessroom.socketio_events import register_socketio_handlers
    register_socketio_handlers()

    if not flask_app.config.get('TESTING'):
        manager.start_sweeper()
        atexit.register(manager.shutdown)

    @click.command('rooms-reset')
    def rooms_reset_command():
        """Drops and recreates the room snapshot table."""
        from chessroom.models import RoomSnapshot
        with flask_app.app_context():
            RoomSnapshot.__table__.drop(db.engine, checkfirst=True)
            RoomSnapshot.__table__.create(db.engine)
            print('Room snapshots have been reset!')

    flask_app.cli.add_command(rooms_reset_command)

    return flask_app
