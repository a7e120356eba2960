"""
Pytest configuration and fixtures for the like store, feed and API tests.
"""
import asyncio
import os
from typing import Dict, List, Optional, Set, Tuple

import pytest

# main.py reads settings at import time; never reach for real Firebase in tests
os.environ.setdefault("BACKEND", "memory")

from models.user import User
from services.backend import BackendFactory, MemoryBackend, MemoryDatabase
from services.errors import BackendUnavailable
from services.like_store import LikeStore


def post_record(post_id: str, like_count: int = 0, timestamp: int = 0, **extra) -> dict:
    """A posts/{id} record as the app stores it"""
    record = {
        "id": post_id,
        "authorId": "author_001",
        "authorName": "David Thompson",
        "handle": "@davidthompson",
        "text": f"Post {post_id}",
        "likeCount": like_count,
        "timestamp": timestamp,
    }
    record.update(extra)
    return record


def make_database(posts: List[dict], likes: Optional[Dict[str, dict]] = None) -> MemoryDatabase:
    tree = {"posts": {record["id"]: record for record in posts}}
    if likes:
        tree["userLikes"] = likes
    return MemoryDatabase(tree)


class ScriptedBackend(MemoryBackend):
    """MemoryBackend whose round trips can be held open or made to fail"""

    def __init__(self, database: MemoryDatabase, uid: Optional[str]):
        super().__init__(database, uid)
        self.gate: Optional[asyncio.Event] = None
        # None holds every operation at the gate
        self.gated_operations: Optional[Set[str]] = None
        self.fail_operations: Set[str] = set()
        self.fail_paths: Set[str] = set()
        self.calls: List[Tuple[str, str]] = []

    async def _round_trip(self, operation: str, path: str) -> None:
        self.calls.append((operation, path))
        if self.gate is not None and (self.gated_operations is None or operation in self.gated_operations):
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        if operation in self.fail_operations or any(path.startswith(p) for p in self.fail_paths):
            raise BackendUnavailable(path, "Network error")

    def operations(self) -> List[str]:
        return [operation for operation, _ in self.calls]


class ScriptedBackendFactory(BackendFactory):
    """Hands out ScriptedBackends sharing one failure set and, when set, one gate"""

    def __init__(self, database: MemoryDatabase):
        self.database = database
        self.fail_paths: Set[str] = set()
        self.gate: Optional[asyncio.Event] = None
        self.created: List[ScriptedBackend] = []
        self.released: List[str] = []
        self.closed = False

    def for_user(self, user: Optional[User]) -> ScriptedBackend:
        backend = ScriptedBackend(self.database, user.user_id if user else None)
        backend.fail_paths = self.fail_paths
        backend.gate = self.gate
        self.created.append(backend)
        return backend

    def release(self, user_id: str) -> None:
        self.released.append(user_id)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def alice() -> User:
    return User(user_id="alice", email="alice@example.com")


@pytest.fixture
def bob() -> User:
    return User(user_id="bob", email="bob@example.com")


@pytest.fixture
def database() -> MemoryDatabase:
    """Two seeded posts: p1 (newest, 3 likes) and p2 (no likes)"""
    return make_database([
        post_record("p1", like_count=3, timestamp=2_000),
        post_record("p2", like_count=0, timestamp=1_000),
    ])


@pytest.fixture
def backend(database, alice) -> ScriptedBackend:
    return ScriptedBackend(database, alice.user_id)


@pytest.fixture
def store(backend) -> LikeStore:
    return LikeStore(backend)
