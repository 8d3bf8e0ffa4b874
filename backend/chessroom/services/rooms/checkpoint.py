import json
import threading
import time
from typing import Any, Dict

from chessroom import db
from chessroom.models import RoomSnapshot

Snapshot = Dict[str, Dict[str, Any]]


class Checkpoint:
    """Durable store for the full room registry."""

    def save(self, snapshot: Snapshot) -> None:
        raise NotImplementedError

    def load(self) -> Snapshot:
        raise NotImplementedError


class NullCheckpoint(Checkpoint):
    def save(self, snapshot: Snapshot) -> None:
        return None

    def load(self) -> Snapshot:
        return {}


class SqlCheckpoint(Checkpoint):
    """One room_snapshot row per live room."""

    def __init__(self, app):
        self.app = app

    def save(self, snapshot: Snapshot) -> None:
        with self.app.app_context():
            try:
                existing = {row.code: row for row in RoomSnapshot.query.all()}
                now = time.time()
                for code, data in snapshot.items():
                    row = existing.pop(code, None)
                    if row is None:
                        row = RoomSnapshot(code=code)
                    row.payload = json.dumps(data)
                    row.updated_at = now
                    db.session.add(row)
                for row in existing.values():
                    db.session.delete(row)
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

    def load(self) -> Snapshot:
        with self.app.app_context():
            return {row.code: json.loads(row.payload) for row in RoomSnapshot.query.all()}


class CheckpointWriter:
    """Fire-and-forget writes in submission order.

    A write that lands after a newer one has completed is skipped, so a
    slow background task never rolls the store back.
    """

    def __init__(self, checkpoint: Checkpoint, spawn, logger, run_async: bool = True):
        self.checkpoint = checkpoint
        self._spawn = spawn
        self._logger = logger
        self._async = run_async
        self._seq = 0
        self._written = 0
        self._seq_lock = threading.Lock()
        self._write_lock = threading.Lock()

    def submit(self, snapshot: Snapshot) -> None:
        with self._seq_lock:
            self._seq += 1
            seq = self._seq
        if self._async:
            self._spawn(self._write, seq, snapshot)
        else:
            self._write(seq, snapshot)

    def flush(self, snapshot: Snapshot) -> None:
        with self._seq_lock:
            self._seq += 1
            seq = self._seq
        self._write(seq, snapshot)

    def _write(self, seq: int, snapshot: Snapshot) -> None:
        with self._write_lock:
            if seq < self._written:
                return
            try:
                self.checkpoint.save(snapshot)
                self._written = seq
            except Exception:
                self._logger.exception(f"[checkpoint-fail] write seq={seq} rooms={len(snapshot)}")

    def load(self) -> Snapshot:
        try:
            return self.checkpoint.load()
        except Exception:
            self._logger.exception("[checkpoint-fail] load failed, starting with no rooms")
            return {}
