"""
Shared pytest fixtures for the backend test suite.

Provides reusable fixtures for:
- An in-memory MongoDB (mongomock) and the repositories over it
- An IntegrityMaintainer with its own lock registry
- Factories for users, channels, videos and comments
- Cross-reference checks used after every mutation
"""

import itertools

import mongomock
import pytest
from fastapi.testclient import TestClient

from integrity import IntegrityMaintainer, KeyedLocks
from media import LocalMediaStorage
from repositories import Repositories
from schemas import User


# =============================================================================
# Store Fixtures
# =============================================================================

@pytest.fixture
def mongo_db():
    """Fresh in-memory database per test."""
    return mongomock.MongoClient()["vidshare_test"]


@pytest.fixture
def repos(mongo_db):
    return Repositories.from_database(mongo_db)


@pytest.fixture
def maintainer(repos):
    return IntegrityMaintainer(repos, lock_registry=KeyedLocks())


# =============================================================================
# Entity Factories
# =============================================================================

@pytest.fixture
def make_user(repos):
    """Create a user directly in the store and return its id."""
    counter = itertools.count(1)

    def _make(name=None):
        n = next(counter)
        user = repos.users.create(User(
            name=name or f"viewer{n}",
            email=f"viewer{n}@videos.io",
            password_hash="not-a-real-hash",
        ))
        return str(user["_id"])

    return _make


@pytest.fixture
def make_channel(maintainer):
    counter = itertools.count(1)

    def _make(owner_id):
        n = next(counter)
        channel = maintainer.create_channel(owner_id, f"Channel {n}", f"channel{n}")
        return str(channel["_id"])

    return _make


@pytest.fixture
def make_video(maintainer):
    counter = itertools.count(1)

    def _make(owner_id):
        n = next(counter)
        video = maintainer.publish_video(
            owner_id, f"Video {n}", f"/static/videos/{n}.mp4")
        return str(video["_id"])

    return _make


@pytest.fixture
def world(maintainer, make_user, make_channel, make_video):
    """
    X owns channel Y with video V.
    Z subscribes to Y and likes V; W subscribes to Y; Z comments on V.
    """
    x, z, w = make_user("xavier"), make_user("zoe"), make_user("wren")
    y = make_channel(x)
    v = make_video(x)
    maintainer.subscribe(y, z)
    maintainer.subscribe(y, w)
    maintainer.like_video(v, z)
    comment = maintainer.post_comment(v, z, "great video")
    return {"x": x, "y": y, "v": v, "z": z, "w": w, "comment": str(comment["_id"])}


# =============================================================================
# Integrity Checks
# =============================================================================

def _all_documents(repos):
    for repo in (repos.users, repos.channels, repos.videos, repos.comments):
        for doc in repo.find():
            yield repo.collection_name, doc


@pytest.fixture
def assert_symmetric(repos):
    """Subscriptions and likes must be mirrored on both sides."""

    def _check():
        users = {str(u["_id"]): u for u in repos.users.find()}
        channels = {str(c["_id"]): c for c in repos.channels.find()}
        videos = {str(v["_id"]): v for v in repos.videos.find()}

        for uid, user in users.items():
            for cid in user["subscriptions"]:
                assert uid in channels[cid]["subscribers"], (uid, cid)
            for vid in user["likes"]:
                assert uid in videos[vid]["likes"], (uid, vid)
        for cid, channel in channels.items():
            for uid in channel["subscribers"]:
                assert cid in users[uid]["subscriptions"], (cid, uid)
        for vid, video in videos.items():
            for uid in video["likes"]:
                assert vid in users[uid]["likes"], (vid, uid)

    return _check


@pytest.fixture
def assert_unreferenced(repos):
    """No surviving document may mention any of the given ids."""

    def _check(*ids):
        targets = set(ids)
        for collection, doc in _all_documents(repos):
            assert str(doc["_id"]) not in targets, f"{collection} {doc['_id']} survived"
            for key, value in doc.items():
                if key == "_id":
                    continue
                values = value if isinstance(value, list) else [value]
                hits = targets.intersection(str(v) for v in values if v is not None)
                assert not hits, f"{collection}.{key} still references {hits}"

    return _check


# =============================================================================
# HTTP Fixtures
# =============================================================================

@pytest.fixture
def storage(tmp_path):
    return LocalMediaStorage(str(tmp_path / "uploads"))


@pytest.fixture
def client(repos, storage):
    """TestClient wired to the in-memory store and a temporary upload dir."""
    from main import app, get_maintainer, get_media_storage, get_repositories

    app.dependency_overrides[get_repositories] = lambda: repos
    app.dependency_overrides[get_maintainer] = lambda: IntegrityMaintainer(
        repos, lock_registry=KeyedLocks())
    app.dependency_overrides[get_media_storage] = lambda: storage
    yield TestClient(app)
    app.dependency_overrides.clear()
