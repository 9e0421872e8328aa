"""
Client-side reconciliation cache.

Remembers the last identity payload that was successfully synced so a client
only calls ``POST /users/sync`` when the principal's profile looks different
from what was last pushed. It is a dirty-check, never a source of truth: the
webhook path keeps the store eventually consistent regardless of what happens
here, so every failure is logged and swallowed.
"""
from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

import httpx

from app.auth.identity import Identity

logger = logging.getLogger(__name__)

STORAGE_KEY_PREFIX = "user_data_"
SYNC_TIMEOUT = 10.0


class SyncStore(Protocol):
    """Best-effort key/value side channel (localStorage in a browser)."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class InMemorySyncStore:
    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class JsonFileSyncStore:
    """Persists entries in a single JSON object file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        data = json.loads(self.path.read_text(encoding="utf-8"))
        return data if isinstance(data, dict) else {}

    def get(self, key: str) -> str | None:
        with self._lock:
            value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data), encoding="utf-8")


@dataclass(frozen=True)
class SyncPayload:
    userId: str
    email: str | None
    name: str

    @classmethod
    def from_identity(cls, identity: Identity) -> SyncPayload:
        if not identity.subject_id:
            raise ValueError("identity has no subject id")
        return cls(
            userId=identity.subject_id,
            email=identity.email,
            name=identity.display_name,
        )

    @property
    def storage_key(self) -> str:
        return f"{STORAGE_KEY_PREFIX}{self.userId}"


class SyncStatus(str, Enum):
    SKIPPED = "skipped"  # already attempted this session, or no principal
    CLEAN = "clean"  # cache matches; no call made
    SYNCED = "synced"
    DEFERRED = "deferred"  # call failed; the webhook path will catch up
    SUCCESS = "success"
    ERROR = "error"


class SyncRequestError(Exception):
    """Raised when the sync endpoint cannot be reached or rejects the call."""


class SyncApiClient:
    def __init__(self, base_url: str, *, client: httpx.Client | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=SYNC_TIMEOUT)

    def sync(self, payload: SyncPayload, session_token: str | None) -> dict:
        headers = {"Content-Type": "application/json"}
        if session_token:
            headers["Authorization"] = f"Bearer {session_token}"
        try:
            response = self._client.post(f"{self.base_url}/users/sync", json=asdict(payload), headers=headers)
        except httpx.HTTPError as exc:
            raise SyncRequestError(f"Sync request failed: {exc}") from exc

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = None
            detail = (body.get("message") or body.get("error")) if isinstance(body, dict) else None
            raise SyncRequestError(f"Sync rejected ({response.status_code}): {detail or response.reason_phrase}")

        try:
            return response.json()
        except ValueError as exc:
            raise SyncRequestError("Sync response is not JSON") from exc


class ClientReconciler:
    def __init__(self, api: SyncApiClient, store: SyncStore) -> None:
        self.api = api
        self.store = store
        self.attempted = False

    def reset_session(self) -> None:
        self.attempted = False

    def _load(self, key: str) -> dict | None:
        try:
            raw = self.store.get(key)
            return json.loads(raw) if raw else None
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable sync cache entry %s: %s", key, exc)
            return None

    def _save(self, payload: SyncPayload) -> None:
        try:
            self.store.set(payload.storage_key, json.dumps(asdict(payload)))
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Could not persist sync cache entry %s: %s", payload.storage_key, exc)

    def is_dirty(self, payload: SyncPayload) -> bool:
        previous = self._load(payload.storage_key)
        return previous != asdict(payload)

    def on_session_established(self, identity: Identity, session_token: str | None) -> SyncStatus:
        """
        Sync once per session, and only when the remembered payload differs.
        """
        if not identity.is_authenticated or not identity.subject_id:
            return SyncStatus.SKIPPED
        if self.attempted:
            return SyncStatus.SKIPPED

        candidate = SyncPayload.from_identity(identity)
        self.attempted = True

        if not self.is_dirty(candidate):
            logger.debug("User data unchanged for %s; skipping sync", candidate.userId)
            return SyncStatus.CLEAN

        try:
            self.api.sync(candidate, session_token)
        except SyncRequestError as exc:
            logger.warning("User sync deferred for %s: %s", candidate.userId, exc)
            return SyncStatus.DEFERRED

        self._save(candidate)
        return SyncStatus.SYNCED

    def manual_sync(self, identity: Identity, session_token: str | None) -> SyncStatus:
        """Explicit "sync account" action: always calls, ignoring the cache and session flag."""
        if not identity.is_authenticated or not identity.subject_id:
            return SyncStatus.ERROR
        candidate = SyncPayload.from_identity(identity)
        try:
            self.api.sync(candidate, session_token)
        except SyncRequestError as exc:
            logger.warning("Manual user sync failed for %s: %s", candidate.userId, exc)
            return SyncStatus.ERROR
        self._save(candidate)
        return SyncStatus.SUCCESS
