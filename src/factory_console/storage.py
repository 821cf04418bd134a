from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

from factory_console.models import AuthUser

logger = logging.getLogger(__name__)

AUTH_TOKEN = "auth_token"
TOKEN_EXPIRES_AT = "token_expires_at"
LAST_ACTIVITY = "last_activity"
SECURITY_LEVEL = "security_level"
USER_SNAPSHOT = "user_snapshot"

SESSION_KEYS = (AUTH_TOKEN, TOKEN_EXPIRES_AT, LAST_ACTIVITY, SECURITY_LEVEL, USER_SNAPSHOT)


class SessionStorage:
    """Key/value store for session state, persisted as a JSON file when a path is given.

    The user snapshot is Fernet-encrypted before it is written. Without a
    configured secret a key is generated for the lifetime of the process.
    """

    def __init__(self, path: str | Path | None = None, *, secret: str | bytes | None = None) -> None:
        self._path = Path(path) if path else None
        self._fernet = Fernet(secret or Fernet.generate_key())
        self._data: dict[str, Any] = self._read_file()

    def _read_file(self) -> dict[str, Any]:
        if self._path is None or not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable session file %s", self._path)
            return {}
        return data if isinstance(data, dict) else {}

    def _flush(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(self._data), encoding="utf-8")

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._flush()

    def remove(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._flush()

    def clear(self) -> None:
        for key in SESSION_KEYS:
            self._data.pop(key, None)
        self._flush()

    def save_user(self, user: AuthUser) -> None:
        payload = user.model_dump_json(by_alias=True).encode("utf-8")
        self.set(USER_SNAPSHOT, self._fernet.encrypt(payload).decode("ascii"))

    def load_user(self) -> AuthUser | None:
        token = self.get(USER_SNAPSHOT)
        if not token:
            return None
        try:
            payload = self._fernet.decrypt(token.encode("ascii"))
        except InvalidToken:
            logger.warning("Stored user snapshot could not be decrypted; discarding it")
            self.remove(USER_SNAPSHOT)
            return None
        return AuthUser.model_validate_json(payload)
