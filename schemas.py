"""
Database Schemas for the video sharing backend

Each Pydantic model maps to a MongoDB collection. The collection name is the lowercase of the class name.

Collections:
- User -> user
- Channel -> channel
- Video -> video
- Comment -> comment

Cross-references are stored as the string form of the referenced ObjectId.
"""

from typing import Any, List, Optional

from pydantic import BaseModel, EmailStr, Field


class User(BaseModel):
    name: str = Field(..., min_length=3, max_length=30)
    email: EmailStr
    password_hash: str = Field(..., description="Bcrypt hash")
    avatar_url: Optional[str] = None
    has_channel: bool = False
    channel_id: Optional[str] = Field(None, description="Owned channel id")
    subscriptions: List[str] = Field(default_factory=list, description="Channel ids")
    likes: List[str] = Field(default_factory=list, description="Video ids")


class Channel(BaseModel):
    name: str = Field(..., min_length=1, max_length=60)
    handle: str = Field(..., min_length=3, max_length=30)
    owner: str = Field(..., description="Owner user id as string")
    avatar_url: Optional[str] = None
    banner_url: Optional[str] = None
    description: Optional[str] = None
    subscribers: List[str] = Field(default_factory=list, description="User ids")


class Video(BaseModel):
    title: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = None
    video_url: str
    thumbnail_url: Optional[str] = None
    owner: str = Field(..., description="Owner user id as string")
    channel_id: str
    views_count: int = 0
    likes: List[str] = Field(default_factory=list, description="User ids")


class Comment(BaseModel):
    video_id: str
    user_id: str
    text: str = Field(..., min_length=1, max_length=500)


# -------------------- Requests --------------------
class RegisterRequest(BaseModel):
    name: str
    email: EmailStr
    password: str


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class CreateChannelRequest(BaseModel):
    name: str
    handle: str
    description: Optional[str] = None


class CommentRequest(BaseModel):
    text: str


# -------------------- Responses --------------------
class ApiResponse(BaseModel):
    status: int = 200
    data: Any = None
    message: str = "Success"
