from chessroom import db
import time


class RoomSnapshot(db.Model):
    __tablename__ = 'room_snapshot'
    code = db.Column(db.String(6), primary_key=True)
    payload = db.Column(db.Text, nullable=False)  # JSON-encoded room
    updated_at = db.Column(db.Float, nullable=False, default=time.time)
