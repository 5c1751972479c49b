"""
Firebase Admin initialisation and Realtime Database access.

The Realtime Database is used as a JSON tree: incidents, responders,
alerts and analysis history each live under their own path. The
firebase-admin SDK is synchronous, so every call is moved to a worker
thread.

The mock database keeps the same tree in memory so dispatch and the
security heuristics work end to end without credentials.
"""

import asyncio
import copy
import itertools
import logging
from typing import Any, Optional, Protocol

logger = logging.getLogger(__name__)

AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"
AUTH_PROVIDER_CERT_URL = "https://www.googleapis.com/oauth2/v1/certs"


class FirebaseError(Exception):
    """Raised when a Firebase call fails."""
    pass


def service_account_info(settings) -> dict[str, Any]:
    """
    Build a service account dict from FIREBASE_* settings.

    Private keys in env files usually carry literal "\\n" sequences,
    which are turned back into newlines here.
    """
    return {
        "type": "service_account",
        "project_id": settings.firebase_project_id,
        "private_key_id": settings.firebase_private_key_id,
        "private_key": settings.firebase_private_key.replace("\\n", "\n"),
        "client_email": settings.firebase_client_email,
        "client_id": settings.firebase_client_id,
        "auth_uri": AUTH_URI,
        "token_uri": TOKEN_URI,
        "auth_provider_x509_cert_url": AUTH_PROVIDER_CERT_URL,
        "client_x509_cert_url": settings.firebase_client_cert_url,
    }


def initialize_firebase(settings):
    """Initialise (or reuse) the default firebase-admin app."""
    import firebase_admin
    from firebase_admin import credentials, exceptions

    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    if settings.firebase_credentials_file:
        cred = credentials.Certificate(settings.firebase_credentials_file)
    else:
        cred = credentials.Certificate(service_account_info(settings))

    options = {"databaseURL": settings.firebase_database_url}
    if settings.firebase_storage_bucket:
        options["storageBucket"] = settings.firebase_storage_bucket

    try:
        app = firebase_admin.initialize_app(cred, options)
    except (ValueError, exceptions.FirebaseError) as e:
        raise FirebaseError(f"Firebase initialization failed: {e}")

    logger.info("Firebase Admin SDK initialized", extra={"project": settings.firebase_project_id})
    return app


def _split(path: str) -> list[str]:
    parts = [p for p in path.strip("/").split("/") if p]
    if not parts:
        raise ValueError("Database path must not be empty")
    return parts


class RealtimeDatabase(Protocol):
    """Protocol for the subset of Realtime Database operations we use."""

    async def get(self, path: str) -> Any:
        ...

    async def set(self, path: str, value: Any) -> None:
        ...

    async def update(self, path: str, values: dict[str, Any]) -> None:
        ...

    async def push(self, path: str, value: Any) -> str:
        ...


class FirebaseRealtimeDatabase:
    """Realtime Database backed by firebase_admin.db."""

    def __init__(self, app=None) -> None:
        from firebase_admin import db

        self._db = db
        self._app = app

    def _ref(self, path: str):
        return self._db.reference(path, app=self._app)

    async def _call(self, description: str, func, *args) -> Any:
        try:
            return await asyncio.to_thread(func, *args)
        except Exception as e:
            logger.error("Realtime Database call failed", extra={"operation": description, "error": str(e)})
            raise FirebaseError(f"{description} failed: {e}")

    async def get(self, path: str) -> Any:
        return await self._call(f"get {path}", self._ref(path).get)

    async def set(self, path: str, value: Any) -> None:
        await self._call(f"set {path}", self._ref(path).set, value)

    async def update(self, path: str, values: dict[str, Any]) -> None:
        await self._call(f"update {path}", self._ref(path).update, values)

    async def push(self, path: str, value: Any) -> str:
        ref = await self._call(f"push {path}", self._ref(path).push, value)
        return ref.key


class MockRealtimeDatabase:
    """
    In-memory JSON tree with slash-separated paths.

    Push keys sort in insertion order, like Firebase's.
    """

    def __init__(self, initial: Optional[dict[str, Any]] = None) -> None:
        self._root: dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self._counter = itertools.count(1)

    def _parent(self, parts: list[str], create: bool) -> Optional[dict[str, Any]]:
        node = self._root
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                if not create:
                    return None
                child = {}
                node[part] = child
            node = child
        return node

    async def get(self, path: str) -> Any:
        parts = _split(path)
        parent = self._parent(parts, create=False)
        if parent is None:
            return None
        return copy.deepcopy(parent.get(parts[-1]))

    async def set(self, path: str, value: Any) -> None:
        parts = _split(path)
        parent = self._parent(parts, create=True)
        if value is None:
            parent.pop(parts[-1], None)
        else:
            parent[parts[-1]] = copy.deepcopy(value)

    async def update(self, path: str, values: dict[str, Any]) -> None:
        parts = _split(path)
        parent = self._parent(parts, create=True)
        node = parent.get(parts[-1])
        if not isinstance(node, dict):
            node = {}
            parent[parts[-1]] = node
        for key, value in values.items():
            if value is None:
                node.pop(key, None)
            else:
                node[key] = copy.deepcopy(value)

    async def push(self, path: str, value: Any) -> str:
        key = f"-mock{next(self._counter):08d}"
        await self.set(f"{path.rstrip('/')}/{key}", value)
        return key

    def snapshot(self) -> dict[str, Any]:
        return copy.deepcopy(self._root)
