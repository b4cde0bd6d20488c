"""
Referential integrity across users, channels, videos and comments.

The document store has no foreign keys, so every flow that creates, links,
unlinks or deletes entities goes through ``IntegrityMaintainer``. It keeps
these relations consistent:

- a user owns at most one channel (``has_channel``/``channel_id``)
- a channel's videos are the videos whose ``channel_id`` points at it
- ``user.subscriptions`` mirrors ``channel.subscribers``
- ``user.likes`` mirrors ``video.likes``
- no surviving document references a deleted id

Each flow holds in-process locks on the ids of the entity group it touches
and, when transactions are enabled, runs inside one MongoDB transaction.
Without transactions a failure part-way through leaves the earlier steps
applied.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from config import config
from database import canonical_id, transaction
from errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from repositories import Repositories
from schemas import Channel, Comment, Video

logger = logging.getLogger(__name__)

Authorizer = Callable[[str, dict], bool]


def owns(actor_id: str, document: dict) -> bool:
    """Default authorizer: the actor owns the document (or is the user)."""
    owner = document.get("owner", document.get("_id"))
    return owner is not None and str(owner) == str(actor_id)


def _key(kind: str, entity_id) -> Optional[str]:
    return f"{kind}:{canonical_id(entity_id)}" if entity_id else None


class KeyedLocks:
    """Per-key mutual exclusion for request threads of one process."""

    def __init__(self):
        self._guard = threading.Lock()
        # key -> [lock, number of holders and waiters]
        self._entries: Dict[str, list] = {}

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            entry = self._entries.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: str) -> None:
        with self._guard:
            entry = self._entries[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)

    @contextmanager
    def hold(self, *keys):
        # Sorted acquisition keeps two flows from deadlocking on shared keys
        ordered = sorted({key for key in keys if key})
        held = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                try:
                    lock.acquire()
                except BaseException:
                    self._checkin(key)
                    raise
                held.append((key, lock))
            yield
        finally:
            for key, lock in reversed(held):
                lock.release()
                self._checkin(key)


# Shared by every maintainer in the process
locks = KeyedLocks()


@dataclass
class CascadeResult:
    """Ids removed by a deletion flow."""

    user_ids: List[str] = field(default_factory=list)
    channel_ids: List[str] = field(default_factory=list)
    video_ids: List[str] = field(default_factory=list)
    comments_deleted: int = 0

    def merge(self, other: "CascadeResult") -> "CascadeResult":
        self.user_ids.extend(other.user_ids)
        self.channel_ids.extend(other.channel_ids)
        self.video_ids.extend(other.video_ids)
        self.comments_deleted += other.comments_deleted
        return self


class IntegrityMaintainer:
    def __init__(self, repos: Repositories, client=None,
                 use_transactions: bool = False, lock_registry: KeyedLocks = None):
        self.repos = repos
        self.client = client
        self.use_transactions = use_transactions
        self.locks = lock_registry if lock_registry is not None else locks

    @contextmanager
    def _unit(self, *keys):
        with self.locks.hold(*keys):
            with transaction(self.client, self.use_transactions) as session:
                yield session

    @staticmethod
    def _require(repo, doc_id, message: str, session=None) -> dict:
        doc = repo.find_by_id(doc_id, session=session)
        if not doc:
            raise NotFoundError(message)
        return doc

    # -------------------- Deletion --------------------
    def _delete_videos(self, video_ids: List[str], session=None) -> CascadeResult:
        """Delete videos along with their comments and the likes pointing at them."""
        result = CascadeResult(video_ids=list(video_ids))
        if not video_ids:
            return result
        self.repos.videos.delete_ids(video_ids, session=session)
        result.comments_deleted = self.repos.comments.delete_for_videos(
            video_ids, session=session)
        self.repos.users.pull_likes_everywhere(video_ids, session=session)
        return result

    def _cascade_channel(self, channel_id: str, session=None) -> CascadeResult:
        """Delete a channel, its videos and every reference to either.

        Works from the channel id alone so that a user left pointing at an
        already missing channel still gets cleaned up.
        """
        video_ids = self.repos.videos.ids_for_channel(channel_id, session=session)
        result = self._delete_videos(video_ids, session=session)
        self.repos.users.pull_subscription_everywhere(channel_id, session=session)
        self.repos.channels.delete_by_id(channel_id, session=session)
        result.channel_ids.append(channel_id)
        return result

    def delete_channel(self, channel_id: str, actor_id: str,
                       authorize: Authorizer = owns) -> CascadeResult:
        actor_id = canonical_id(actor_id)
        with self._unit(_key("channel", channel_id)) as session:
            channel = self._require(
                self.repos.channels, channel_id, "Channel not found", session)
            if not authorize(actor_id, channel):
                raise ForbiddenError("You are not authorized to delete this channel")

            result = self._cascade_channel(str(channel["_id"]), session=session)
            self.repos.users.clear_channel(channel["owner"], session=session)

        logger.info(
            f"Deleted channel {channel_id}: videos={len(result.video_ids)}, "
            f"comments={result.comments_deleted}")
        return result

    def delete_video(self, video_id: str, actor_id: str,
                     authorize: Authorizer = owns) -> CascadeResult:
        actor_id = canonical_id(actor_id)
        video = self._require(self.repos.videos, video_id, "Video not found")
        keys = (_key("video", video_id), _key("channel", video.get("channel_id")))
        with self._unit(*keys) as session:
            video = self._require(self.repos.videos, video_id, "Video not found", session)
            if not authorize(actor_id, video):
                raise ForbiddenError("You are not authorized to delete this video")
            result = self._delete_videos([str(video["_id"])], session=session)

        logger.info(f"Deleted video {video_id}: comments={result.comments_deleted}")
        return result

    def delete_account(self, user_id: str, actor_id: str,
                       authorize: Authorizer = owns) -> CascadeResult:
        actor_id = canonical_id(actor_id)
        user = self._require(self.repos.users, user_id, "User not found")
        keys = (_key("user", user_id), _key("channel", user.get("channel_id")))
        with self._unit(*keys) as session:
            user = self._require(self.repos.users, user_id, "User not found", session)
            if not authorize(actor_id, user):
                raise ForbiddenError("You are not authorized to delete this account")
            user_id = str(user["_id"])
            result = CascadeResult()

            if user.get("channel_id"):
                result.merge(self._cascade_channel(user["channel_id"], session=session))

            # Covers channels missing from user.subscriptions as well
            self.repos.channels.pull_subscriber_everywhere(user_id, session=session)

            # Only non-empty when data predates the one-channel-per-owner rule
            stray_ids = self.repos.videos.ids_for_owner(user_id, session=session)
            result.merge(self._delete_videos(stray_ids, session=session))

            result.comments_deleted += self.repos.comments.delete_by_author(
                user_id, session=session)
            self.repos.videos.pull_like_everywhere(user_id, session=session)
            self.repos.users.delete_by_id(user_id, session=session)
            result.user_ids.append(user_id)

        logger.info(
            f"Deleted account {user_id}: channels={len(result.channel_ids)}, "
            f"videos={len(result.video_ids)}, comments={result.comments_deleted}")
        return result

    # -------------------- Subscriptions --------------------
    def _load_pair(self, repo, doc_id, message: str, user_id: str, session=None):
        """Load the target document and the acting user, returning stored ids."""
        doc = self._require(repo, doc_id, message, session)
        user = self._require(self.repos.users, user_id, "User not found", session)
        return doc, str(doc["_id"]), str(user["_id"])

    def subscribe(self, channel_id: str, user_id: str) -> dict:
        with self._unit(_key("channel", channel_id), _key("user", user_id)) as session:
            channel, channel_id, user_id = self._load_pair(
                self.repos.channels, channel_id, "Channel not found", user_id, session)
            if channel["owner"] == user_id:
                raise ValidationError("Cannot subscribe to your own channel")
            if user_id in channel.get("subscribers", []):
                raise ConflictError("Already subscribed to this channel")

            channel = self.repos.channels.add_subscriber(channel_id, user_id, session=session)
            self.repos.users.add_subscription(user_id, channel_id, session=session)
        return channel

    def unsubscribe(self, channel_id: str, user_id: str) -> dict:
        with self._unit(_key("channel", channel_id), _key("user", user_id)) as session:
            channel, channel_id, user_id = self._load_pair(
                self.repos.channels, channel_id, "Channel not found", user_id, session)
            if user_id not in channel.get("subscribers", []):
                raise ConflictError("Not subscribed to this channel")

            channel = self.repos.channels.remove_subscriber(channel_id, user_id, session=session)
            self.repos.users.remove_subscription(user_id, channel_id, session=session)
        return channel

    # -------------------- Likes --------------------
    def _video_keys(self, video_id: str, user_id: str) -> tuple:
        video = self._require(self.repos.videos, video_id, "Video not found")
        return (_key("video", video_id), _key("user", user_id),
                _key("channel", video.get("channel_id")))

    def like_video(self, video_id: str, user_id: str) -> dict:
        with self._unit(*self._video_keys(video_id, user_id)) as session:
            video, video_id, user_id = self._load_pair(
                self.repos.videos, video_id, "Video not found", user_id, session)
            if user_id in video.get("likes", []):
                raise ConflictError("Video already liked")

            video = self.repos.videos.add_like(video_id, user_id, session=session)
            self.repos.users.add_like(user_id, video_id, session=session)
        return video

    def unlike_video(self, video_id: str, user_id: str) -> dict:
        with self._unit(*self._video_keys(video_id, user_id)) as session:
            video, video_id, user_id = self._load_pair(
                self.repos.videos, video_id, "Video not found", user_id, session)
            if user_id not in video.get("likes", []):
                raise ConflictError("Video not liked")

            video = self.repos.videos.remove_like(video_id, user_id, session=session)
            self.repos.users.remove_like(user_id, video_id, session=session)
        return video

    # -------------------- Creation --------------------
    def create_channel(self, user_id: str, name: str, handle: str,
                       description: str = None) -> dict:
        # Handles are unique across users, so the handle is locked alongside the owner
        with self._unit(_key("user", user_id), f"handle:{handle}") as session:
            user = self._require(self.repos.users, user_id, "User not found", session)
            user_id = str(user["_id"])
            if user.get("has_channel"):
                raise ConflictError("User already has a channel")
            if self.repos.channels.find_by_handle(handle, session=session):
                raise ConflictError("Channel handle already taken")

            channel = self.repos.channels.create(Channel(
                name=name,
                handle=handle,
                owner=user_id,
                description=description,
                avatar_url=config.media.default_avatar_url,
                banner_url=config.media.default_banner_url,
            ), session=session)
            self.repos.users.set_channel(user_id, str(channel["_id"]), session=session)

        logger.info(f"User {user_id} created channel {channel['_id']}")
        return channel

    def publish_video(self, user_id: str, title: str, video_url: str,
                      description: str = None, thumbnail_url: str = None) -> dict:
        user = self._require(self.repos.users, user_id, "User not found")
        keys = (_key("user", user_id), _key("channel", user.get("channel_id")))
        with self._unit(*keys) as session:
            user = self._require(self.repos.users, user_id, "User not found", session)
            user_id = str(user["_id"])
            channel_id = user.get("channel_id")
            channel = channel_id and self.repos.channels.find_by_id(channel_id, session=session)
            if not channel or channel["owner"] != user_id:
                raise ValidationError("Create a channel before publishing videos")

            return self.repos.videos.create(Video(
                title=title,
                description=description,
                video_url=video_url,
                thumbnail_url=thumbnail_url,
                owner=user_id,
                channel_id=str(channel["_id"]),
            ), session=session)

    def post_comment(self, video_id: str, user_id: str, text: str) -> dict:
        with self._unit(*self._video_keys(video_id, user_id)) as session:
            _, video_id, user_id = self._load_pair(
                self.repos.videos, video_id, "Video not found", user_id, session)
            return self.repos.comments.create(
                Comment(video_id=video_id, user_id=user_id, text=text), session=session)
