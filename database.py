import copy
import logging
import secrets
import threading
import time

import firebase_admin
from firebase_admin import credentials, db as firebase_db

import config

logger = logging.getLogger(__name__)

# Same alphabet and layout as the realtime database's own push ids, so locally
# generated keys sort chronologically next to server generated ones.
PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"

_push_lock = threading.Lock()
_last_push_time = 0
_last_rand_chars = [0] * 12


def generate_push_id() -> str:
    global _last_push_time, _last_rand_chars
    with _push_lock:
        now = int(time.time() * 1000)
        duplicate_time = now == _last_push_time
        _last_push_time = now

        time_chars = []
        for _ in range(8):
            time_chars.append(PUSH_CHARS[now % 64])
            now //= 64
        time_chars.reverse()

        if not duplicate_time:
            _last_rand_chars = [secrets.randbelow(64) for _ in range(12)]
        else:
            # Same millisecond: increment the random part so ids stay ordered
            i = 11
            while i >= 0 and _last_rand_chars[i] == 63:
                _last_rand_chars[i] = 0
                i -= 1
            if i >= 0:
                _last_rand_chars[i] += 1

        return "".join(time_chars) + "".join(PUSH_CHARS[c] for c in _last_rand_chars)


def split_path(path: str):
    return [part for part in path.strip("/").split("/") if part]


def check_update_paths(updates: dict):
    """Reject multi-path updates whose paths overlap, like the realtime database does."""
    paths = sorted("/".join(split_path(p)) for p in updates)
    for a, b in zip(paths, paths[1:]):
        if a == b or b.startswith(a + "/") or a == "":
            raise ValueError(f"Overlapping paths in update: {a!r} and {b!r}")


def _normalize(value):
    # The realtime database never stores nulls or empty objects
    if isinstance(value, dict):
        cleaned = {}
        for key, child in value.items():
            child = _normalize(child)
            if child is not None:
                cleaned[str(key)] = child
        return cleaned or None
    if isinstance(value, list):
        cleaned = [_normalize(v) for v in value]
        return cleaned if any(v is not None for v in cleaned) else None
    return value


class MemoryStore:
    """In-process hierarchical store with the same path semantics as the realtime database.

    Used for tests and local development (``FORUM_STORE=memory``). Multi-path
    updates are applied to a copy and swapped in, so they are all-or-nothing.
    """

    def __init__(self, data=None):
        self._root = _normalize(copy.deepcopy(data)) or {}
        self._lock = threading.RLock()

    def generate_key(self) -> str:
        return generate_push_id()

    def get(self, path: str = "/"):
        with self._lock:
            node = self._root
            for part in split_path(path):
                if isinstance(node, dict) and part in node:
                    node = node[part]
                elif isinstance(node, list) and part.isdigit() and int(part) < len(node):
                    node = node[int(part)]
                else:
                    return None
            return copy.deepcopy(node) if node != {} else None

    def set(self, path: str, value):
        self.update({path: value})

    def delete(self, path: str):
        self.update({path: None})

    def update(self, updates: dict):
        if not updates:
            return
        check_update_paths(updates)
        with self._lock:
            root = copy.deepcopy(self._root)
            for path, value in updates.items():
                root = self._write(root, split_path(path), _normalize(copy.deepcopy(value)))
            self._root = root or {}

    def _write(self, node, parts, value):
        if not parts:
            return value
        if isinstance(node, list):
            node = {str(i): v for i, v in enumerate(node) if v is not None}
        if not isinstance(node, dict):
            node = {}
        head, rest = parts[0], parts[1:]
        child = self._write(node.get(head), rest, value)
        if child is None:
            node.pop(head, None)
        else:
            node[head] = child
        return node or None


class FirebaseStore:
    """Path-addressed access to the Firebase Realtime Database."""

    def __init__(self, app=None):
        self._app = app

    def _ref(self, path: str = "/"):
        return firebase_db.reference(path, app=self._app)

    def generate_key(self) -> str:
        return generate_push_id()

    def get(self, path: str = "/"):
        return self._ref(path).get()

    def set(self, path: str, value):
        if value is None:
            self._ref(path).delete()
        else:
            self._ref(path).set(value)

    def delete(self, path: str):
        self._ref(path).delete()

    def update(self, updates: dict):
        if not updates:
            return
        check_update_paths(updates)
        self._ref("/").update(updates)


def init_firebase():
    try:
        return firebase_admin.get_app()
    except ValueError:
        cred = credentials.Certificate({
            "type": "service_account",
            "project_id": config.FB_PROJECT_ID,
            "client_email": config.FB_CLIENT_EMAIL,
            "private_key": config.FB_PRIVATE_KEY,
            "token_uri": "https://oauth2.googleapis.com/token",
        })
        return firebase_admin.initialize_app(cred, {"databaseURL": config.FB_DATABASE_URL})


_store = None
_store_lock = threading.Lock()


def get_db():
    """Return the process-wide store, creating it on first use.

    The handle lives for the whole process and is never torn down. Tests
    replace it with ``set_db``.
    """
    global _store
    if _store is None:
        with _store_lock:
            if _store is None:
                if config.FORUM_STORE == "memory":
                    logger.info("Using in-memory store")
                    _store = MemoryStore()
                else:
                    logger.info("Connecting to realtime database %s", config.FB_DATABASE_URL)
                    _store = FirebaseStore(init_firebase())
    return _store


def set_db(store):
    """Install ``store`` as the process-wide handle (``None`` resets it)."""
    global _store
    with _store_lock:
        _store = store
    return store

