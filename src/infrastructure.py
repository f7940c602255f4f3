"""
infrastructure.py

In-memory implementation of all repository / source interfaces and the
Unit of Work.

This is a self-contained backend that keeps weights, overrides,
annotations, task lists, snapshots and discipline mappings in plain Python
dicts.  It is intentionally simple and is suitable for local development,
demos and integration testing without the warehouse or the relational store.

To plug in real stores later, implement the same Abstract* interfaces from
application.py and override get_uow() in api.py:

    app.dependency_overrides[get_uow] = lambda: WarehouseUnitOfWork(client)

Nothing in service.py, application.py or api.py needs to change.
"""

from __future__ import annotations

import copy
import threading
from datetime import date
from typing import Any, Dict, List, Optional

from application import (
    AbstractAnnotationRepository,
    AbstractDisciplineMappingSource,
    AbstractTaskSource,
    AbstractUnitOfWork,
    AbstractWeightRepository,
)
from model import ChangeAnnotation


# ---------------------------------------------------------------------------
# Generic in-memory store
# ---------------------------------------------------------------------------

class _Store(dict):
    """A plain dict with typed get/save/delete helpers."""

    def fetch(self, key):
        return self.get(key)

    def put(self, obj, key=None) -> None:
        self[obj.id if key is None else key] = obj

    def remove(self, key) -> bool:
        return self.pop(key, None) is not None

    def all(self) -> list:
        return list(self.values())


# ---------------------------------------------------------------------------
# Shared in-memory database (module-level singleton)
# Persists for the lifetime of the process; restarting uvicorn resets it.
# ---------------------------------------------------------------------------

class InMemoryDatabase:
    def __init__(self):
        self.default_weights:     _Store = _Store()   # layer name -> rows
        self.project_overrides:   _Store = _Store()   # project code -> payload
        self.annotations:         _Store = _Store()   # annotation id -> entity
        self.tasks:               _Store = _Store()   # project code -> rows
        self.snapshots:           _Store = _Store()   # project code -> {date: rows}
        self.discipline_mappings: _Store = _Store()   # project code -> rows
        self.lock = threading.RLock()


# Module-level singleton, shared across all requests
_db = InMemoryDatabase()


# ---------------------------------------------------------------------------
# Repository implementations
# ---------------------------------------------------------------------------

class InMemoryWeightRepository(AbstractWeightRepository):
    def __init__(self, db: InMemoryDatabase): self._db = db

    def _rows(self, layer: str) -> List[Dict[str, Any]]:
        return copy.deepcopy(self._db.default_weights.fetch(layer) or [])

    def _save_rows(self, layer: str, rows) -> None:
        with self._db.lock:
            self._db.default_weights.put(copy.deepcopy(list(rows)), key=layer)

    def find_default_phase_weights(self):       return self._rows("phase")
    def find_default_discipline_weights(self):  return self._rows("discipline")
    def find_default_activity_weights(self):    return self._rows("activity")
    def save_default_phase_weights(self, rows):       self._save_rows("phase", rows)
    def save_default_discipline_weights(self, rows):  self._save_rows("discipline", rows)
    def save_default_activity_weights(self, rows):    self._save_rows("activity", rows)

    def find_project_overrides(self, project_code):
        return copy.deepcopy(self._db.project_overrides.fetch(project_code))

    def save_project_overrides(self, project_code, overrides):
        payload = copy.deepcopy(dict(overrides))
        payload["project_code"] = project_code
        with self._db.lock:
            self._db.project_overrides.put(payload, key=project_code)

    def delete_project_overrides(self, project_code):
        with self._db.lock:
            return self._db.project_overrides.remove(project_code)


class InMemoryAnnotationRepository(AbstractAnnotationRepository):
    def __init__(self, store: _Store): self._s = store
    def list_for_project(self, project_code):
        return [a for a in self._s.all() if a.project_code == project_code]
    def find_by_key(self, project_code, matching_key) -> Optional[ChangeAnnotation]:
        return next(
            (a for a in self.list_for_project(project_code) if a.matching_key == matching_key),
            None,
        )
    def save(self, annotation):        self._s.put(annotation)


class InMemoryTaskSource(AbstractTaskSource):
    def __init__(self, db: InMemoryDatabase): self._db = db

    def query_tasks(self, project_code):
        return copy.deepcopy(self._db.tasks.fetch(project_code) or [])

    def query_snapshots(self, project_code):
        return copy.deepcopy(self._db.snapshots.fetch(project_code) or {})

    def query_all_snapshots(self):
        with self._db.lock:
            return copy.deepcopy(dict(self._db.snapshots))

    def save_tasks(self, project_code, tasks):
        with self._db.lock:
            self._db.tasks.put(copy.deepcopy(list(tasks)), key=project_code)

    def save_snapshot(self, project_code, snapshot_date: date, tasks):
        with self._db.lock:
            snapshots = self._db.snapshots.setdefault(project_code, {})
            snapshots[snapshot_date] = copy.deepcopy(list(tasks))


class InMemoryDisciplineMappingSource(AbstractDisciplineMappingSource):
    def __init__(self, store: _Store): self._s = store
    def fetch_mappings(self, project_code):
        rows = self._s.fetch(project_code)
        return copy.deepcopy(rows) if rows is not None else None
    def save_mappings(self, project_code, rows):
        self._s.put(copy.deepcopy(list(rows)), key=project_code)


# ---------------------------------------------------------------------------
# Unit of Work
# ---------------------------------------------------------------------------

class InMemoryUnitOfWork(AbstractUnitOfWork):
    """
    Wraps all in-memory repositories.  commit() and rollback() are no-ops
    because dict mutations are immediate; there is no transaction to manage.
    """

    def __init__(self, db: InMemoryDatabase = _db):
        self.weights             = InMemoryWeightRepository(db)
        self.annotations         = InMemoryAnnotationRepository(db.annotations)
        self.tasks               = InMemoryTaskSource(db)
        self.discipline_mappings = InMemoryDisciplineMappingSource(db.discipline_mappings)

    def commit(self)   -> None: pass   # no-op for in-memory
    def rollback(self) -> None: pass   # no-op for in-memory
