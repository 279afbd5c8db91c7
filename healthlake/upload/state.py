"""Local upload state: which files were acknowledged by the server, and sync cursors."""

import hashlib
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    func,
    select,
)
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.exc import SQLAlchemyError

from healthlake.errors import PersistenceError

STATE_FILE = "state.db"

metadata = MetaData()

uploaded_files = Table(
    "uploaded_files",
    metadata,
    Column("path", String, primary_key=True),
    Column("size", Integer, nullable=False),
    Column("hash", String, nullable=False),
    Column("uploaded_at", DateTime, server_default=func.current_timestamp()),
)

sync_state = Table(
    "sync_state",
    metadata,
    Column("key", String, primary_key=True),
    Column("value", String, nullable=False),
)


@dataclass
class UploadFileState:
    path: str
    size: int
    hash: str
    uploaded_at: Optional[datetime] = None


def hash_file(path, chunk_size: int = 1 << 20) -> str:
    """SHA-256 of the whole file, hex encoded."""
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(chunk_size), b""):
            h.update(block)
    return h.hexdigest()


class StateStore:
    def __init__(self, state_dir):
        state_dir = Path(state_dir).expanduser()
        state_dir.mkdir(parents=True, exist_ok=True)
        self.path = state_dir / STATE_FILE
        self.engine = create_engine(f"sqlite:///{self.path}")
        try:
            metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise PersistenceError(f"opening state db {self.path}: {e}")

    def close(self):
        self.engine.dispose()

    def lookup(self, path: str) -> Optional[UploadFileState]:
        stmt = select(uploaded_files).where(uploaded_files.c.path == path)
        try:
            with self.engine.connect() as conn:
                row = conn.execute(stmt).first()
        except SQLAlchemyError as e:
            raise PersistenceError(f"state lookup {path}: {e}")
        if row is None:
            return None
        return UploadFileState(row.path, row.size, row.hash, row.uploaded_at)

    def is_uploaded(self, path: str, size: int, file_hash: str) -> bool:
        known = self.lookup(path)
        return known is not None and known.size == size and known.hash == file_hash

    def mark_uploaded(self, path: str, size: int, file_hash: str) -> None:
        stmt = insert(uploaded_files).values(path=path, size=size, hash=file_hash)
        stmt = stmt.on_conflict_do_update(
            index_elements=["path"],
            set_={
                "size": stmt.excluded.size,
                "hash": stmt.excluded.hash,
                "uploaded_at": func.current_timestamp(),
            },
        )
        try:
            with self.engine.begin() as conn:
                conn.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError(f"marking {path} uploaded: {e}")

    def get_cursor(self, key: str) -> Optional[str]:
        stmt = select(sync_state.c.value).where(sync_state.c.key == key)
        try:
            with self.engine.connect() as conn:
                return conn.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PersistenceError(f"reading cursor {key}: {e}")

    def set_cursor(self, key: str, value: str) -> None:
        stmt = insert(sync_state).values(key=key, value=value)
        stmt = stmt.on_conflict_do_update(
            index_elements=["key"], set_={"value": stmt.excluded.value}
        )
        try:
            with self.engine.begin() as conn:
                conn.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError(f"saving cursor {key}: {e}")
