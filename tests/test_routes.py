"""
API tests - the feed and posts endpoints against the in-memory database.
"""
import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from config import Settings
from conftest import ScriptedBackendFactory, make_database, post_record
from main import create_app
from services.sessions import FeedSessions

ALICE = {"Authorization": "Bearer alice"}


@pytest.fixture
def backends():
    return ScriptedBackendFactory(make_database(
        [
            post_record("p1", like_count=3, timestamp=2_000),
            post_record("p2", like_count=0, timestamp=1_000),
        ],
        likes={"alice": {"p2": True}},
    ))


@pytest.fixture
def client(backends):
    app = create_app(Settings(backend="memory"), backends)
    with TestClient(app) as client:
        yield client


class TestAuth:

    def test_missing_header_is_rejected(self, client):
        response = client.get("/feed")

        assert response.status_code == 401

    def test_malformed_header_is_rejected(self, client):
        response = client.get("/posts", headers={"Authorization": "Token alice"})

        assert response.status_code == 401


class TestPosts:

    def test_all_posts_newest_first(self, client):
        response = client.get("/posts", headers=ALICE)

        assert response.status_code == 200
        body = response.json()
        assert [post["id"] for post in body] == ["p1", "p2"]
        assert body[0]["likeCount"] == 3
        assert body[0]["authorName"] == "David Thompson"

    def test_single_post(self, client):
        response = client.get("/posts/p2", headers=ALICE)

        assert response.status_code == 200
        assert response.json()["id"] == "p2"

    def test_missing_post(self, client):
        response = client.get("/posts/nope", headers=ALICE)

        assert response.status_code == 404

    def test_backend_failure_is_503(self, client, backends):
        backends.fail_paths.add("posts")

        response = client.get("/posts", headers=ALICE)

        assert response.status_code == 503


class TestFeed:

    def test_feed_merges_like_state(self, client):
        response = client.get("/feed", headers=ALICE)

        assert response.status_code == 200
        body = response.json()
        assert body["state"]["status"] == "ready"
        assert body["showLikedOnly"] is False
        liked = {entry["post"]["id"]: entry["isLikedByCurrentUser"] for entry in body["state"]["posts"]}
        assert liked == {"p1": False, "p2": True}

    def test_toggle_like(self, client, backends):
        response = client.post("/feed/posts/p1/like", headers=ALICE)

        assert response.status_code == 200
        body = response.json()
        assert body["postId"] == "p1"
        assert body["entry"]["isLikedByCurrentUser"] is True
        assert body["entry"]["post"]["likeCount"] == 4
        assert backends.database.get(["userLikes", "alice", "p1"]) is True

    def test_toggle_unknown_post(self, client):
        response = client.post("/feed/posts/nope/like", headers=ALICE)

        assert response.status_code == 404

    def test_failed_toggle_reports_error_and_rolls_back(self, client, backends):
        client.get("/feed", headers=ALICE)
        backends.fail_paths.add("userLikes/alice/p1")

        body = client.post("/feed/posts/p1/like", headers=ALICE).json()

        assert body["entry"]["isLikedByCurrentUser"] is False
        assert body["entry"]["post"]["likeCount"] == 3
        assert body["feed"]["lastError"]

    def test_liked_only_mode(self, client):
        response = client.put("/feed/mode", json={"showLikedOnly": True}, headers=ALICE)

        body = response.json()
        assert body["showLikedOnly"] is True
        assert [entry["post"]["id"] for entry in body["state"]["posts"]] == ["p2"]

        body = client.put("/feed/mode", json={"showLikedOnly": False}, headers=ALICE).json()
        assert [entry["post"]["id"] for entry in body["state"]["posts"]] == ["p1", "p2"]

    def test_failed_load_then_refresh(self, client, backends):
        backends.fail_paths.add("posts")

        body = client.get("/feed", headers=ALICE).json()
        assert body["state"]["status"] == "failed"

        backends.fail_paths.clear()
        body = client.post("/feed/refresh", headers=ALICE).json()
        assert body["state"]["status"] == "ready"

    def test_feeds_are_per_user(self, client):
        client.post("/feed/posts/p1/like", headers=ALICE)

        body = client.get("/feed", headers={"Authorization": "Bearer bob"}).json()

        liked = {entry["post"]["id"]: entry["isLikedByCurrentUser"] for entry in body["state"]["posts"]}
        assert liked == {"p1": False, "p2": False}
        assert body["state"]["posts"][0]["post"]["likeCount"] == 4

    def test_close_feed(self, client, backends):
        client.get("/feed", headers=ALICE)

        assert client.delete("/feed", headers=ALICE).json() == {"closed": True}
        assert backends.released == ["alice"]
        assert client.delete("/feed", headers=ALICE).json() == {"closed": False}


def test_shutdown_closes_backends(backends):
    app = create_app(Settings(backend="memory"), backends)
    with TestClient(app) as client:
        client.get("/feed", headers=ALICE)

    assert backends.closed is True


@pytest.mark.anyio
async def test_closing_the_feed_answers_a_pending_toggle_with_410(backends):
    settings = Settings(backend="memory")
    app = create_app(settings, backends)
    # ASGITransport does not run the lifespan
    app.state.settings = settings
    app.state.sessions = FeedSessions(backends)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        await client.get("/feed", headers=ALICE)
        feed_backend = backends.created[-1]
        feed_backend.gate = asyncio.Event()
        feed_backend.gated_operations = {"write_atomic"}

        toggle = asyncio.create_task(client.post("/feed/posts/p1/like", headers=ALICE))
        while "write_atomic" not in feed_backend.operations():
            await asyncio.sleep(0)
        closed = await client.delete("/feed", headers=ALICE)
        feed_backend.gate.set()
        response = await toggle

    assert closed.json() == {"closed": True}
    assert response.status_code == 410
    assert backends.database.get(["userLikes", "alice", "p1"]) is None
