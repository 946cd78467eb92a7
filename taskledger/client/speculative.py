"""Speculative apply with compensating rollback.

Local views change before the server answers; each change is recorded under an
operation id with a snapshot of what it replaced, so a refusal can put back
exactly what was there.
"""
from __future__ import annotations

import copy
import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Hashable

log = logging.getLogger(__name__)

_MISSING = object()


class SpeculativeCache:
    def __init__(self, initial: dict | None = None):
        self._data: dict[Hashable, Any] = dict(initial or {})
        self._pending: dict[str, tuple[Hashable, Any]] = {}
        self._lock = threading.RLock()

    def get(self, key, default=None):
        with self._lock:
            return self._data.get(key, default)

    def set(self, key, value):
        """Store authoritative data (a server response or a poll)."""
        with self._lock:
            self._data[key] = value

    def discard(self, key):
        with self._lock:
            self._data.pop(key, None)

    @property
    def pending(self) -> list[str]:
        with self._lock:
            return list(self._pending)

    def apply(self, op_id: str, key, update: Callable[[Any], Any]):
        with self._lock:
            if op_id in self._pending:
                raise ValueError(f"Operation {op_id!r} is already pending")
            before = self._data.get(key, _MISSING)
            snapshot = copy.deepcopy(before)
            current = None if before is _MISSING else copy.deepcopy(before)
            value = update(current)
            self._data[key] = value
            self._pending[op_id] = (key, snapshot)
            log.debug("speculative apply op=%s key=%s", op_id, key)
            return value

    def commit(self, op_id: str, value=_MISSING):
        with self._lock:
            key, _ = self._pending.pop(op_id)
            if value is not _MISSING:
                self._data[key] = value

    def rollback(self, op_id: str):
        with self._lock:
            key, snapshot = self._pending.pop(op_id)
            if snapshot is _MISSING:
                self._data.pop(key, None)
            else:
                self._data[key] = snapshot
            log.debug("speculative rollback op=%s key=%s", op_id, key)

    @contextmanager
    def speculate(self, op_id: str, key, update: Callable[[Any], Any]):
        value = self.apply(op_id, key, update)
        try:
            yield value
        except BaseException:
            self.rollback(op_id)
            raise
        else:
            self.commit(op_id)
