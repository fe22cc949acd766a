"""Token persistence for the API client.

Two scopes exist side by side: a durable one that survives restarts (a JSON
file) and a session one that lives only as long as the process. The
"remember me" choice made at login picks the scope; the choice itself is
recorded in the durable store so a restarted client reads from the right one.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)

ACCESS_TOKEN = "accessToken"
REFRESH_TOKEN = "refreshToken"
USER = "user"
TOKEN_EXPIRY = "tokenExpiry"
SESSION_ID = "sessionId"
REMEMBER_ME = "rememberMe"

SESSION_KEYS = (ACCESS_TOKEN, REFRESH_TOKEN, USER, TOKEN_EXPIRY, SESSION_ID)
FILE_MODE = 0o600


class StorageScope(str, Enum):
    DURABLE = "durable"
    SESSION = "session"


class MemoryTokenStore:
    """Process-lifetime key/value store"""

    def __init__(self) -> None:
        self._data: Dict[str, Any] = {}

    def get(self, key: str) -> Any:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()


class FileTokenStore(MemoryTokenStore):
    """Key/value store persisted as a JSON object on every write; readable by the owner only"""

    def __init__(self, path: Union[str, Path]) -> None:
        super().__init__()
        self.path = Path(path)
        self._lock = threading.Lock()
        if self.path.exists():
            try:
                self._data = json.loads(self.path.read_text(encoding="utf-8")) or {}
            except (OSError, json.JSONDecodeError) as exc:
                logger.warning(f"Ignoring unreadable token store {self.path}: {exc}")
                self._data = {}

    def _flush(self) -> None:
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh)
            # The mode passed to os.open only applies to new files
            os.chmod(self.path, FILE_MODE)

    def set(self, key: str, value: Any) -> None:
        super().set(key, value)
        self._flush()

    def delete(self, key: str) -> None:
        super().delete(key)
        self._flush()

    def clear(self) -> None:
        super().clear()
        self._flush()


class SessionStorage:
    """Routes every session read and write to the scope chosen at login"""

    def __init__(
        self,
        durable: Optional[MemoryTokenStore] = None,
        session: Optional[MemoryTokenStore] = None,
    ) -> None:
        self.durable = durable if durable is not None else MemoryTokenStore()
        self.session = session if session is not None else MemoryTokenStore()
        # Resolved once here and then only by choose_scope
        self._scope = StorageScope.DURABLE if self.durable.get(REMEMBER_ME) else StorageScope.SESSION

    @property
    def scope(self) -> StorageScope:
        return self._scope

    def choose_scope(self, remember_me: bool) -> StorageScope:
        self.durable.set(REMEMBER_ME, bool(remember_me))
        self._scope = StorageScope.DURABLE if remember_me else StorageScope.SESSION
        return self._scope

    def _active(self) -> MemoryTokenStore:
        return self.durable if self.scope is StorageScope.DURABLE else self.session

    def get(self, key: str) -> Any:
        return self._active().get(key)

    def set(self, key: str, value: Any) -> None:
        self._active().set(key, value)

    def delete(self, key: str) -> None:
        self._active().delete(key)

    def clear_all(self) -> None:
        """Wipe session keys and the scope choice from both scopes"""
        for store in (self.durable, self.session):
            for key in SESSION_KEYS + (REMEMBER_ME,):
                store.delete(key)
        self._scope = StorageScope.SESSION
