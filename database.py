"""
MongoDB access for the video sharing backend.

Collections:
- user
- channel
- video
- comment
"""

from contextlib import contextmanager
from datetime import datetime

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import MongoClient

from config import config
from errors import ValidationError

# MongoClient connects lazily, so importing this module never blocks
client = MongoClient(config.mongo.url)
db = client[config.mongo.database]


def objid(id_str) -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValidationError("Invalid id format")


def canonical_id(id_str) -> str:
    """String form of an id as stored in cross-reference fields."""
    return str(objid(id_str))


def to_str_id(doc):
    if not doc:
        return doc
    d = {**doc}
    if d.get("_id"):
        d["id"] = str(d.pop("_id"))
    # Convert datetime to isoformat
    for k, v in list(d.items()):
        if isinstance(v, datetime):
            d[k] = v.isoformat()
    return d


@contextmanager
def transaction(mongo_client, enabled: bool):
    """Yield a session bound to a multi-document transaction, or None.

    The transaction commits when the block exits normally and aborts when it
    raises.
    """
    if not enabled or mongo_client is None:
        yield None
        return
    with mongo_client.start_session() as session:
        with session.start_transaction():
            yield session
