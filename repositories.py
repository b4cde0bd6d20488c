"""
Collection-scoped repositories over the MongoDB document store.

Repositories only know how to read and write their own collection. Keeping
cross-references between collections consistent is the job of
``integrity.IntegrityMaintainer``.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from pydantic import BaseModel
from pymongo import ReturnDocument

from database import objid


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _opts(session) -> dict:
    return {"session": session} if session is not None else {}


def _stamp(patch: dict) -> dict:
    """Wrap a plain patch in $set and record the update time."""
    if not any(key.startswith("$") for key in patch):
        patch = {"$set": patch}
    else:
        patch = dict(patch)
    patch["$set"] = {**patch.get("$set", {}), "updated_at": _now()}
    return patch


class Repository:
    collection_name = ""

    def __init__(self, database):
        self.collection = database[self.collection_name]

    def find_by_id(self, doc_id, session=None) -> Optional[dict]:
        return self.collection.find_one({"_id": objid(doc_id)}, **_opts(session))

    def find_one(self, filter_dict: dict, session=None) -> Optional[dict]:
        return self.collection.find_one(filter_dict, **_opts(session))

    def find(self, filter_dict: dict = None, sort=None, limit: int = 0,
             session=None) -> List[dict]:
        cursor = self.collection.find(filter_dict or {}, **_opts(session))
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)

    def ids(self, filter_dict: dict, session=None) -> List[str]:
        cursor = self.collection.find(filter_dict, {"_id": 1}, **_opts(session))
        return [str(doc["_id"]) for doc in cursor]

    def create(self, data, session=None) -> dict:
        doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
        doc["created_at"] = _now()
        doc["updated_at"] = _now()
        doc["_id"] = self.collection.insert_one(doc, **_opts(session)).inserted_id
        return doc

    def update_by_id(self, doc_id, patch: dict, session=None) -> Optional[dict]:
        return self.collection.find_one_and_update(
            {"_id": objid(doc_id)},
            _stamp(patch),
            return_document=ReturnDocument.AFTER,
            **_opts(session),
        )

    def update_many(self, filter_dict: dict, patch: dict, session=None) -> int:
        result = self.collection.update_many(filter_dict, _stamp(patch), **_opts(session))
        return result.modified_count

    def delete_by_id(self, doc_id, session=None) -> bool:
        result = self.collection.delete_one({"_id": objid(doc_id)}, **_opts(session))
        return result.deleted_count == 1

    def delete_many(self, filter_dict: dict, session=None) -> int:
        return self.collection.delete_many(filter_dict, **_opts(session)).deleted_count

    def delete_ids(self, doc_ids: Iterable[str], session=None) -> int:
        doc_ids = list(doc_ids)
        if not doc_ids:
            return 0
        return self.delete_many(
            {"_id": {"$in": [objid(i) for i in doc_ids]}}, session=session)


class UserRepository(Repository):
    collection_name = "user"

    def find_by_email(self, email: str, session=None) -> Optional[dict]:
        return self.find_one({"email": email}, session=session)

    def find_by_name_or_email(self, name: str, email: str, exclude_id=None,
                              session=None) -> Optional[dict]:
        filter_dict = {"$or": [{"name": name}, {"email": email}]}
        if exclude_id is not None:
            filter_dict["_id"] = {"$ne": objid(exclude_id)}
        return self.find_one(filter_dict, session=session)

    def set_channel(self, user_id, channel_id: str, session=None):
        return self.update_by_id(
            user_id, {"has_channel": True, "channel_id": channel_id}, session=session)

    def clear_channel(self, user_id, session=None):
        return self.update_by_id(
            user_id, {"has_channel": False, "channel_id": None}, session=session)

    def add_subscription(self, user_id, channel_id: str, session=None):
        return self.update_by_id(
            user_id, {"$addToSet": {"subscriptions": channel_id}}, session=session)

    def remove_subscription(self, user_id, channel_id: str, session=None):
        return self.update_by_id(
            user_id, {"$pull": {"subscriptions": channel_id}}, session=session)

    def add_like(self, user_id, video_id: str, session=None):
        return self.update_by_id(user_id, {"$addToSet": {"likes": video_id}}, session=session)

    def remove_like(self, user_id, video_id: str, session=None):
        return self.update_by_id(user_id, {"$pull": {"likes": video_id}}, session=session)

    def pull_subscription_everywhere(self, channel_id: str, session=None) -> int:
        return self.update_many(
            {"subscriptions": channel_id},
            {"$pull": {"subscriptions": channel_id}},
            session=session,
        )

    def pull_likes_everywhere(self, video_ids: Iterable[str], session=None) -> int:
        video_ids = list(video_ids)
        if not video_ids:
            return 0
        return self.update_many(
            {"likes": {"$in": video_ids}},
            {"$pullAll": {"likes": video_ids}},
            session=session,
        )


class ChannelRepository(Repository):
    collection_name = "channel"

    def find_by_owner(self, user_id: str, session=None) -> Optional[dict]:
        return self.find_one({"owner": user_id}, session=session)

    def find_by_handle(self, handle: str, session=None) -> Optional[dict]:
        return self.find_one({"handle": handle}, session=session)

    def add_subscriber(self, channel_id, user_id: str, session=None):
        return self.update_by_id(
            channel_id, {"$addToSet": {"subscribers": user_id}}, session=session)

    def remove_subscriber(self, channel_id, user_id: str, session=None):
        return self.update_by_id(
            channel_id, {"$pull": {"subscribers": user_id}}, session=session)

    def pull_subscriber_everywhere(self, user_id: str, session=None) -> int:
        return self.update_many(
            {"subscribers": user_id},
            {"$pull": {"subscribers": user_id}},
            session=session,
        )


class VideoRepository(Repository):
    collection_name = "video"

    def ids_for_channel(self, channel_id: str, session=None) -> List[str]:
        return self.ids({"channel_id": channel_id}, session=session)

    def ids_for_owner(self, user_id: str, session=None) -> List[str]:
        return self.ids({"owner": user_id}, session=session)

    def for_channel(self, channel_id: str) -> List[dict]:
        return self.find({"channel_id": channel_id}, sort=[("created_at", -1)])

    def for_owner(self, user_id: str) -> List[dict]:
        return self.find({"owner": user_id}, sort=[("created_at", -1)])

    def latest(self, limit: int = 20) -> List[dict]:
        return self.find({}, sort=[("created_at", -1)], limit=limit)

    def increment_views(self, video_id, session=None):
        return self.update_by_id(video_id, {"$inc": {"views_count": 1}}, session=session)

    def add_like(self, video_id, user_id: str, session=None):
        return self.update_by_id(video_id, {"$addToSet": {"likes": user_id}}, session=session)

    def remove_like(self, video_id, user_id: str, session=None):
        return self.update_by_id(video_id, {"$pull": {"likes": user_id}}, session=session)

    def pull_like_everywhere(self, user_id: str, session=None) -> int:
        return self.update_many(
            {"likes": user_id}, {"$pull": {"likes": user_id}}, session=session)


class CommentRepository(Repository):
    collection_name = "comment"

    def for_video(self, video_id: str, limit: int = 50) -> List[dict]:
        return self.find({"video_id": video_id}, sort=[("created_at", -1)], limit=limit)

    def delete_for_videos(self, video_ids: Iterable[str], session=None) -> int:
        video_ids = list(video_ids)
        if not video_ids:
            return 0
        return self.delete_many({"video_id": {"$in": video_ids}}, session=session)

    def delete_by_author(self, user_id: str, session=None) -> int:
        return self.delete_many({"user_id": user_id}, session=session)


@dataclass
class Repositories:
    users: UserRepository
    channels: ChannelRepository
    videos: VideoRepository
    comments: CommentRepository

    @classmethod
    def from_database(cls, database) -> "Repositories":
        return cls(
            users=UserRepository(database),
            channels=ChannelRepository(database),
            videos=VideoRepository(database),
            comments=CommentRepository(database),
        )
