import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import firebase_admin
from firebase_admin import credentials, db
from firebase_admin.exceptions import FirebaseError

from models.user import User
from services.errors import BackendUnavailable

logger = logging.getLogger(__name__)

POSTS_PATH = "posts"
USER_LIKES_PATH = "userLikes"


def split_path(path: str) -> List[str]:
    """Split a slash separated tree path into its keys, ignoring empty segments"""
    return [segment for segment in path.strip("/").split("/") if segment]


def user_app_name(user_id: str) -> str:
    return f"feed-user-{user_id}"


class Backend(ABC):
    """
    Async view of a JSON tree database, scoped to one principal.

    Every method raises BackendUnavailable when the request cannot complete,
    whether the cause is the network or a rule rejecting the principal.
    """

    @abstractmethod
    async def read(self, path: str) -> Any:
        """Return the raw value stored at path, or None when nothing is there"""

    async def read_collection(self, path: str) -> List[Tuple[str, Any]]:
        """Return the children of a collection node as (key, value) pairs in key order"""
        value = await self.read(path)
        if value is None:
            return []
        if isinstance(value, dict):
            return sorted(value.items())
        if isinstance(value, list):
            # the database turns objects with dense integer keys into arrays
            return [(str(index), item) for index, item in enumerate(value) if item is not None]
        raise BackendUnavailable(path, "expected a collection node")

    @abstractmethod
    async def write(self, path: str, value: Any) -> None:
        """Set the value at path. Writing None removes the key"""

    @abstractmethod
    async def write_atomic(self, updates: Dict[str, Any]) -> None:
        """Apply several path writes as one all-or-nothing update"""

    @abstractmethod
    async def remove(self, path: str) -> None:
        """Delete the key at path"""


class BackendFactory(ABC):
    """Builds backends that act on behalf of a given principal"""

    @abstractmethod
    def for_user(self, user: Optional[User]) -> Backend:
        ...

    def release(self, user_id: str) -> None:
        """Drop whatever for_user() holds on to for this user"""

    def close(self) -> None:
        pass


class FirebaseBackend(Backend):
    """Backend over the Firebase Realtime Database, bound to one firebase_admin app"""

    def __init__(self, app: firebase_admin.App):
        self.app = app

    def _ref(self, path: str) -> db.Reference:
        return db.reference("/" + "/".join(split_path(path)), app=self.app)

    async def _call(self, path: str, func, *args):
        # firebase_admin.db is blocking, keep it off the event loop
        try:
            return await asyncio.to_thread(func, *args)
        except (FirebaseError, ValueError) as e:
            logger.warning("Realtime Database request for '%s' failed: %s", path, e)
            raise BackendUnavailable(path, str(e)) from e

    async def read(self, path: str) -> Any:
        return await self._call(path, self._ref(path).get)

    async def write(self, path: str, value: Any) -> None:
        await self._call(path, self._ref(path).set, value)

    async def write_atomic(self, updates: Dict[str, Any]) -> None:
        # a multi-path update from the root is applied atomically by the server
        normalized = {"/".join(split_path(path)): value for path, value in updates.items()}
        await self._call(", ".join(normalized), self._ref("/").update, normalized)

    async def remove(self, path: str) -> None:
        await self._call(path, self._ref(path).delete)


class FirebaseBackendFactory(BackendFactory):
    """
    Resolves the principal inside the backend: each user gets a named app whose
    database requests run with auth.uid set to that user, so the database rules
    decide what the user may touch.
    """

    def __init__(self, credential: credentials.Base, database_url: str):
        self.credential = credential
        self.database_url = database_url
        self._apps: Dict[str, firebase_admin.App] = {}

    def _app_for(self, name: str, auth_override: Optional[dict]) -> firebase_admin.App:
        app = self._apps.get(name)
        if app is None:
            options = {
                "databaseURL": self.database_url,
                "databaseAuthVariableOverride": auth_override,
            }
            app = firebase_admin.initialize_app(self.credential, options, name=name)
            self._apps[name] = app
        return app

    def for_user(self, user: Optional[User]) -> Backend:
        if user is None:
            return FirebaseBackend(self._app_for("feed-anonymous", None))
        return FirebaseBackend(self._app_for(user_app_name(user.user_id), {"uid": user.user_id}))

    def release(self, user_id: str) -> None:
        app = self._apps.pop(user_app_name(user_id), None)
        if app is not None:
            firebase_admin.delete_app(app)

    def close(self) -> None:
        for app in self._apps.values():
            firebase_admin.delete_app(app)
        self._apps.clear()


class MemoryDatabase:
    """In-process JSON tree shared by every MemoryBackend built on it"""

    def __init__(self, tree: Optional[dict] = None):
        self.tree: dict = copy.deepcopy(tree) if tree else {}

    def get(self, keys: List[str]) -> Any:
        node: Any = self.tree
        for key in keys:
            if not isinstance(node, dict) or key not in node:
                return None
            node = node[key]
        return copy.deepcopy(node)

    def set(self, keys: List[str], value: Any) -> None:
        if value is None:
            self.delete(keys)
            return
        if not keys:
            self.tree = copy.deepcopy(value) if isinstance(value, dict) else {}
            return
        node = self.tree
        for key in keys[:-1]:
            child = node.get(key)
            if not isinstance(child, dict):
                child = {}
                node[key] = child
            node = child
        node[keys[-1]] = copy.deepcopy(value)

    def delete(self, keys: List[str]) -> None:
        if not keys:
            self.tree = {}
            return
        trail = [self.tree]
        for key in keys[:-1]:
            child = trail[-1].get(key)
            if not isinstance(child, dict):
                return
            trail.append(child)
        trail[-1].pop(keys[-1], None)
        # empty parents vanish, as they do in the real database
        for depth in range(len(trail) - 1, 0, -1):
            if trail[depth]:
                break
            trail[depth - 1].pop(keys[depth - 1], None)


class MemoryBackend(Backend):
    """
    Backend over a MemoryDatabase applying the same rules as database.rules.json:
    a signed-in principal may use posts/ and only its own userLikes/{uid}/ partition.
    """

    def __init__(self, database: MemoryDatabase, uid: Optional[str]):
        self.database = database
        self.uid = uid

    def _check_access(self, path: str) -> List[str]:
        keys = split_path(path)
        if not self.uid:
            raise BackendUnavailable(path, "Permission denied")
        if keys and keys[0] == POSTS_PATH:
            return keys
        if len(keys) >= 2 and keys[0] == USER_LIKES_PATH and keys[1] == self.uid:
            return keys
        raise BackendUnavailable(path, "Permission denied")

    async def _round_trip(self, operation: str, path: str) -> None:
        """
        Suspension point standing in for the network round trip.

        operation is the Backend method name and path the tree path it touches
        (comma separated for write_atomic). They are unused here; subclasses
        override this hook to observe, hold back or fail single requests.
        """
        await asyncio.sleep(0)

    async def read(self, path: str) -> Any:
        keys = self._check_access(path)
        await self._round_trip("read", path)
        return self.database.get(keys)

    async def write(self, path: str, value: Any) -> None:
        keys = self._check_access(path)
        await self._round_trip("write", path)
        self.database.set(keys, value)

    async def write_atomic(self, updates: Dict[str, Any]) -> None:
        checked = [(self._check_access(path), value) for path, value in updates.items()]
        await self._round_trip("write_atomic", ", ".join(updates))
        for keys, value in checked:
            self.database.set(keys, value)

    async def remove(self, path: str) -> None:
        keys = self._check_access(path)
        await self._round_trip("remove", path)
        self.database.delete(keys)


class MemoryBackendFactory(BackendFactory):

    def __init__(self, database: MemoryDatabase):
        self.database = database

    def for_user(self, user: Optional[User]) -> Backend:
        return MemoryBackend(self.database, user.user_id if user else None)
