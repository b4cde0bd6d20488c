"""
Unit tests for the collection repositories (repositories.py).
"""

import pytest

from errors import ValidationError
from schemas import Comment


class TestRepository:

    def test_create_sets_id_and_timestamps(self, repos):
        doc = repos.comments.create(Comment(video_id="v1", user_id="u1", text="hi"))

        stored = repos.comments.find_by_id(str(doc["_id"]))
        assert stored["text"] == "hi"
        assert "created_at" in stored
        assert "updated_at" in stored

    def test_update_by_id_wraps_plain_patch(self, repos):
        doc = repos.comments.create({"video_id": "v1", "user_id": "u1", "text": "hi"})

        updated = repos.comments.update_by_id(str(doc["_id"]), {"text": "edited"})

        assert updated["text"] == "edited"
        assert updated["user_id"] == "u1"

    def test_update_by_id_missing_returns_none(self, repos):
        assert repos.comments.update_by_id("65a000000000000000000000", {"text": "x"}) is None

    def test_invalid_id_is_validation_error(self, repos):
        with pytest.raises(ValidationError, match="Invalid id format"):
            repos.users.find_by_id("not-an-id")

    def test_delete_by_id_reports_outcome(self, repos):
        doc = repos.comments.create({"video_id": "v1", "user_id": "u1", "text": "hi"})

        assert repos.comments.delete_by_id(str(doc["_id"])) is True
        assert repos.comments.delete_by_id(str(doc["_id"])) is False

    def test_delete_ids_with_empty_list(self, repos):
        assert repos.videos.delete_ids([]) == 0


class TestUserRepository:

    def test_pull_likes_everywhere(self, repos, make_user):
        a, b = make_user(), make_user()
        repos.users.add_like(a, "v1")
        repos.users.add_like(a, "v2")
        repos.users.add_like(b, "v2")
        repos.users.add_like(b, "v3")

        modified = repos.users.pull_likes_everywhere(["v1", "v2"])

        assert modified == 2
        assert repos.users.find_by_id(a)["likes"] == []
        assert repos.users.find_by_id(b)["likes"] == ["v3"]

    def test_pull_likes_everywhere_noop_for_no_ids(self, repos):
        assert repos.users.pull_likes_everywhere([]) == 0

    def test_add_subscription_is_set_like(self, repos, make_user):
        user = make_user()
        repos.users.add_subscription(user, "c1")
        repos.users.add_subscription(user, "c1")

        assert repos.users.find_by_id(user)["subscriptions"] == ["c1"]

    def test_pull_subscription_everywhere(self, repos, make_user):
        a, b = make_user(), make_user()
        repos.users.add_subscription(a, "c1")
        repos.users.add_subscription(b, "c2")

        repos.users.pull_subscription_everywhere("c1")

        assert repos.users.find_by_id(a)["subscriptions"] == []
        assert repos.users.find_by_id(b)["subscriptions"] == ["c2"]

    def test_find_by_name_or_email_excludes_self(self, repos, make_user):
        user = make_user("morgan")

        assert repos.users.find_by_name_or_email("morgan", None) is not None
        assert repos.users.find_by_name_or_email("morgan", None, exclude_id=user) is None

    def test_set_and_clear_channel(self, repos, make_user):
        user = make_user()

        repos.users.set_channel(user, "c1")
        assert repos.users.find_by_id(user)["has_channel"] is True

        repos.users.clear_channel(user)
        cleared = repos.users.find_by_id(user)
        assert cleared["has_channel"] is False
        assert cleared["channel_id"] is None


class TestVideoAndCommentRepositories:

    def test_pull_like_everywhere(self, repos):
        first = repos.videos.create({"owner": "u1", "channel_id": "c1", "likes": ["u9", "u2"]})
        second = repos.videos.create({"owner": "u1", "channel_id": "c1", "likes": ["u2"]})

        repos.videos.pull_like_everywhere("u9")

        assert repos.videos.find_by_id(first["_id"])["likes"] == ["u2"]
        assert repos.videos.find_by_id(second["_id"])["likes"] == ["u2"]

    def test_increment_views(self, repos):
        video = repos.videos.create({"owner": "u1", "channel_id": "c1", "views_count": 0})

        repos.videos.increment_views(str(video["_id"]))
        updated = repos.videos.increment_views(str(video["_id"]))

        assert updated["views_count"] == 2

    def test_ids_for_channel(self, repos):
        kept = repos.videos.create({"owner": "u1", "channel_id": "c1"})
        repos.videos.create({"owner": "u2", "channel_id": "c2"})

        assert repos.videos.ids_for_channel("c1") == [str(kept["_id"])]

    def test_delete_for_videos(self, repos):
        repos.comments.create({"video_id": "v1", "user_id": "u1", "text": "a"})
        repos.comments.create({"video_id": "v2", "user_id": "u1", "text": "b"})
        repos.comments.create({"video_id": "v3", "user_id": "u1", "text": "c"})

        assert repos.comments.delete_for_videos(["v1", "v2"]) == 2
        assert [c["video_id"] for c in repos.comments.find()] == ["v3"]
