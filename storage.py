"""
Client-side persistence: a string key/value record (the storefront's local
storage), the observer that mirrors store changes into it, and the one-time
hydration on mount.
"""
from __future__ import annotations

import json
import logging
import os
from typing import Any, Callable, Dict, Optional

from config import STORE_KEY
from schemas import PersistedState, StoreState

logger = logging.getLogger(__name__)


class LocalStorage:
    """Key/value strings kept in a JSON file, or in memory when ``path`` is None."""

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._items: Dict[str, str] = self._read() if path else {}

    def _read(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError, RecursionError) as e:
            logger.warning("Ignoring unreadable storage file %s: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring storage file %s: not a JSON object", self.path)
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _write(self) -> None:
        if not self.path:
            return
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as fh:
            json.dump(self._items, fh)
        os.replace(tmp_path, self.path)

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = str(value)
        self._write()

    def remove_item(self, key: str) -> None:
        if self._items.pop(key, None) is not None:
            self._write()

    def clear(self) -> None:
        self._items = {}
        self._write()


class StatePersister:
    """Store listener writing ``{cart, user, isAuthenticated}`` whenever it changes."""

    def __init__(self, storage: LocalStorage, key: str = STORE_KEY):
        self.storage = storage
        self.key = key
        self._last: Optional[str] = None

    def __call__(self, state: StoreState) -> None:
        blob = json.dumps(state.persisted())
        if blob == self._last:
            return
        self.storage.set_item(self.key, blob)
        self._last = blob
        logger.debug("Persisted store state under %s", self.key)


def load_persisted_state(storage: LocalStorage, key: str = STORE_KEY) -> Optional[PersistedState]:
    saved = storage.get_item(key)
    if not saved:
        return None
    try:
        data: Any = json.loads(saved)
        return PersistedState.model_validate(data)
    except (ValueError, RecursionError) as e:
        logger.debug("Discarding malformed persisted state: %s", e)
        return None


def mount_store(store, storage: LocalStorage, key: str = STORE_KEY) -> Callable[[], None]:
    """Hydrate ``store`` from storage once, then persist every change. Returns the unsubscribe."""
    persisted = load_persisted_state(storage, key)
    if persisted is not None:
        store.hydrate(persisted)
    persister = StatePersister(storage, key)
    unsubscribe = store.subscribe(persister)
    try:
        persister(store.state)
    except OSError as e:
        logger.warning("Could not persist store state: %s", e)
    return unsubscribe
