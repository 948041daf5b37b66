import datetime
import enum
import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import jwt
from fastapi import HTTPException

logger = logging.getLogger(__name__)

CART_STORAGE_KEY = "icytales_cart_v2"
COUNTRY_STORAGE_KEY = "icyTales:selectedCountry"
ACCESS_TOKEN_KEY = "cafe_accessToken"
REFRESH_TOKEN_KEY = "cafe_refreshToken"
USER_KEY = "cafe_authUser"


class LoadStatus(str, enum.Enum):
    OK = "ok"
    EMPTY = "empty"
    CORRUPT = "corrupt"


@dataclass
class Loaded:
    status: LoadStatus
    value: Any = None

    @property
    def ok(self) -> bool:
        return self.status is LoadStatus.OK


_path_locks: Dict[Path, threading.RLock] = {}
_path_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.RLock:
    # one lock per file, shared by every LocalStorage pointing at it
    key = path.resolve()
    with _path_locks_guard:
        lock = _path_locks.get(key)
        if lock is None:
            lock = _path_locks[key] = threading.RLock()
        return lock


class LocalStorage:
    """String key/value store kept in a single JSON file.

    Mirrors the browser localStorage the storefront state lives in: values
    are strings, the file is read on every access and rewritten after every
    mutation. Each read-modify-write holds the file's lock and the new
    contents replace the old file atomically, so readers never see a half
    written file and concurrent writers to different keys do not lose each
    other's values. Writers of the same key: last one wins.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._lock = _lock_for(self.path)

    def _read_all(self) -> dict:
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError):
            logger.warning("storage file %s is unreadable; starting empty", self.path)
            return {}
        if not isinstance(data, dict):
            logger.warning("storage file %s does not hold an object; starting empty", self.path)
            return {}
        return data

    def _write_all(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            value = self._read_all().get(key)
        return value if isinstance(value, str) else None

    def set_item(self, key: str, value: str) -> None:
        self.set_items({key: value})

    def set_items(self, values: dict) -> None:
        """Write several keys in one file write."""
        with self._lock:
            data = self._read_all()
            data.update(values)
            self._write_all(data)

    def remove_item(self, *keys: str) -> None:
        with self._lock:
            data = self._read_all()
            for key in keys:
                data.pop(key, None)
            self._write_all(data)

    def load_json(self, key: str) -> Loaded:
        raw = self.get_item(key)
        if not raw:
            return Loaded(LoadStatus.EMPTY)
        try:
            return Loaded(LoadStatus.OK, json.loads(raw))
        except ValueError:
            return Loaded(LoadStatus.CORRUPT)

    def save_json(self, key: str, value: Any) -> None:
        self.set_item(key, json.dumps(value, ensure_ascii=False))


def read_token_claims(token: Optional[str]) -> dict:
    """Claims of an access token issued by the backend.

    The storefront cannot verify the signature (the secret lives on the
    backend), so this is only used for display and expiry hints.
    """
    if not token:
        return {}
    try:
        return jwt.decode(token, options={"verify_signature": False, "verify_exp": False})
    except jwt.InvalidTokenError:
        return {}


def token_expires_at(token: Optional[str]) -> Optional[datetime.datetime]:
    exp = read_token_claims(token).get("exp")
    if not isinstance(exp, (int, float)):
        return None
    return datetime.datetime.fromtimestamp(exp, tz=datetime.timezone.utc)


def require_session(auth):
    if not auth.is_authenticated:
        raise HTTPException(status_code=401, detail="login required")
    return auth.user


def require_report_access(auth):
    user = require_session(auth)  # reports are for signed in staff only
    if user.role not in ("ADMIN", "MANAGER"):
        raise HTTPException(status_code=403, detail="admin or manager role required")
    return user
