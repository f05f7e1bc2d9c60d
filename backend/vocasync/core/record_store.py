from __future__ import annotations

import json
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from ..models import StoredRecord

Record = Dict[str, Any]
AcceptFn = Callable[[str, Optional[Record], Record], bool]


def split_path(path: str) -> tuple[str, str]:
    path = path.strip("/")
    if not path:
        raise ValueError("empty store path")
    parent, _, key = path.rpartition("/")
    return parent, key


class RecordStore(ABC):
    """Path-addressable store of JSON records.

    Paths are ``/``-separated; callers escape record ids before using them
    as path segments.
    """

    @abstractmethod
    def get(self, path: str) -> Optional[Record]:
        ...

    def exists(self, path: str) -> bool:
        return self.get(path) is not None

    @abstractmethod
    def children(self, path: str) -> Dict[str, Record]:
        """Return ``{key: record}`` for every record directly under ``path``."""

    @abstractmethod
    def update(self, updates: Mapping[str, Optional[Record]]) -> None:
        """Write many paths at once; a None value deletes the path."""

    @abstractmethod
    def merge(self, candidates: Mapping[str, Record], accept: AcceptFn) -> List[str]:
        """
        Conditionally write each candidate.

        ``accept(path, existing, incoming)`` is evaluated against the value the
        store holds at write time, and the accepted writes commit together.
        Returns the accepted paths.
        """


class SqlRecordStore(RecordStore):
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        # Serializes merges issued from this process
        self._merge_lock = threading.Lock()

    def get(self, path: str) -> Optional[Record]:
        db: Session = self._session_factory()
        try:
            row = db.get(StoredRecord, path.strip("/"))
            return json.loads(row.value_json) if row else None
        finally:
            db.close()

    def children(self, path: str) -> Dict[str, Record]:
        db: Session = self._session_factory()
        try:
            rows = db.scalars(
                select(StoredRecord)
                .where(StoredRecord.parent == path.strip("/"))
                .order_by(StoredRecord.key)
            ).all()
            return {row.key: json.loads(row.value_json) for row in rows}
        finally:
            db.close()

    def update(self, updates: Mapping[str, Optional[Record]]) -> None:
        if not updates:
            return
        db: Session = self._session_factory()
        try:
            with db.begin():
                for path, value in updates.items():
                    self._write(db, path, value)
        finally:
            db.close()

    def merge(self, candidates: Mapping[str, Record], accept: AcceptFn) -> List[str]:
        if not candidates:
            return []
        accepted: List[str] = []
        with self._merge_lock:
            db: Session = self._session_factory()
            try:
                with db.begin():
                    paths = [p.strip("/") for p in candidates]
                    # Row locks where the backend supports them (ignored by SQLite)
                    current = {
                        row.path: row
                        for row in db.scalars(
                            select(StoredRecord)
                            .where(StoredRecord.path.in_(paths))
                            .with_for_update()
                        ).all()
                    }
                    for path, incoming in candidates.items():
                        row = current.get(path.strip("/"))
                        existing = json.loads(row.value_json) if row else None
                        if not accept(path, existing, incoming):
                            continue
                        self._write(db, path, incoming, row=row)
                        accepted.append(path)
            finally:
                db.close()
        return accepted

    def _write(
        self,
        db: Session,
        path: str,
        value: Optional[Record],
        row: Optional[StoredRecord] = None,
    ) -> None:
        parent, key = split_path(path)
        path = f"{parent}/{key}" if parent else key
        if row is None:
            row = db.get(StoredRecord, path)

        if value is None:
            if row is not None:
                db.delete(row)
            return

        payload = json.dumps(value, sort_keys=True)
        if row is None:
            db.add(StoredRecord(path=path, parent=parent, key=key, value_json=payload))
        else:
            row.value_json = payload
            row.updated_at = datetime.utcnow()
