import os

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///chessroom.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # Grace window for admin absence and seat abandonment (seconds)
    GRACE_PERIOD_SEC = float(os.environ.get('GRACE_PERIOD_SEC', '60'))
    # How often the background sweep checks running clocks (seconds)
    CLOCK_SWEEP_INTERVAL_SEC = float(os.environ.get('CLOCK_SWEEP_INTERVAL_SEC', '1.0'))
    # Match lengths offered to the admin (minutes)
    ALLOWED_DURATIONS = (3, 5, 7)
    DEFAULT_DURATION_MIN = int(os.environ.get('DEFAULT_DURATION_MIN', '5'))
    # Room snapshots
    CHECKPOINT_ENABLED = os.environ.get('CHECKPOINT_ENABLED', '1') == '1'
    CHECKPOINT_ASYNC = True
    CHECKPOINT_CREATE_TABLES = os.environ.get('CHECKPOINT_CREATE_TABLES', '1') == '1'
    # module:Class of the move legality verifier
    LEGALITY_VERIFIER = os.environ.get(
        'LEGALITY_VERIFIER', 'chessroom.services.rooms.legality:TrustingVerifier'
    )
    MAX_NAME_LENGTH = int(os.environ.get('MAX_NAME_LENGTH', '32'))
    MAX_CHAT_LENGTH = int(os.environ.get('MAX_CHAT_LENGTH', '500'))
    BCRYPT_LOG_ROUNDS = int(os.environ.get('BCRYPT_LOG_ROUNDS', '12'))
