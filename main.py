import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import Depends, FastAPI, File, Form, Header, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as SchemaValidationError
from starlette.concurrency import run_in_threadpool

# Password hashing
from passlib.context import CryptContext

from config import config
from database import canonical_id, client, db, to_str_id
from errors import (
    ApiError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from integrity import IntegrityMaintainer, owns
from media import LocalMediaStorage
from repositories import Repositories
from schemas import (
    ApiResponse,
    CommentRequest,
    CreateChannelRequest,
    LoginRequest,
    RegisterRequest,
    User,
)

logging.basicConfig(
    level=getattr(logging, config.server.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info("Starting video sharing backend...")
    for warning in config.validate():
        logger.warning(f"Config warning: {warning}")
    logger.info(f"Multi-document transactions: {config.mongo.use_transactions}")

    yield

    logger.info("Shutting down video sharing backend...")


app = FastAPI(title="Video Sharing Backend", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.server.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Creates the upload folders before the static mount checks for them
media_storage = LocalMediaStorage(config.media.upload_dir, config.media.base_url)
app.mount(config.media.base_url, StaticFiles(directory=config.media.upload_dir), name="static")


# -------------------- Error handling --------------------
@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ())[1:])
    message = f"{field}: {first.get('msg')}" if field else "All fields are required"
    return JSONResponse(status_code=400, content={"status": 400, "error": message})


@app.exception_handler(SchemaValidationError)
async def schema_validation_handler(request: Request, exc: SchemaValidationError):
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first["loc"])
    return JSONResponse(
        status_code=400, content={"status": 400, "error": f"{field}: {first['msg']}"})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"status": 500, "error": "Internal server error"})


# -------------------- Helpers --------------------

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def public_user(doc):
    if not doc:
        return doc
    doc = {k: v for k, v in doc.items() if k != "password_hash"}
    return to_str_id(doc)


_email_adapter = TypeAdapter(EmailStr)


def validate_email(email: str) -> str:
    try:
        return _email_adapter.validate_python(email)
    except SchemaValidationError:
        raise ValidationError("Invalid email address")


# -------------------- Dependencies --------------------

def get_repositories() -> Repositories:
    return Repositories.from_database(db)


def get_maintainer(repos: Repositories = Depends(get_repositories)) -> IntegrityMaintainer:
    return IntegrityMaintainer(repos, client=client, use_transactions=config.mongo.use_transactions)


def get_media_storage() -> LocalMediaStorage:
    return media_storage


def get_current_user_id(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    repos: Repositories = Depends(get_repositories),
) -> str:
    if not x_user_id:
        raise UnauthorizedError("Missing X-User-Id header")
    try:
        user = repos.users.find_by_id(x_user_id)
    except ValidationError:
        user = None
    if not user:
        raise UnauthorizedError("Invalid user id")
    return str(user["_id"])


def require_owner(actor_id: str, doc: dict, message: str) -> None:
    if not owns(actor_id, doc):
        raise ForbiddenError(message)


# -------------------- Basic Routes --------------------
@app.get("/")
def read_root():
    return {"message": "Video Sharing Backend is running"}


@app.get("/test")
def test_database():
    info = {
        "backend": "running",
        "database_connected": False,
        "collections": []
    }
    try:
        info["collections"] = db.list_collection_names()
        info["database_connected"] = True
    except Exception as e:
        info["error"] = str(e)
    return info


# -------------------- Auth --------------------
@app.post("/auth/register", status_code=201, response_model=ApiResponse)
def register(payload: RegisterRequest, repos: Repositories = Depends(get_repositories)):
    if not payload.name.strip() or not payload.password:
        raise ValidationError("All fields are required")
    if repos.users.find_by_name_or_email(payload.name, payload.email):
        raise ConflictError("User with email or username already exists")

    user = repos.users.create(User(
        name=payload.name,
        email=payload.email,
        password_hash=hash_password(payload.password),
        avatar_url=config.media.default_avatar_url,
    ))
    logger.info(f"Registered user {user['_id']}")
    return ApiResponse(status=201, data=public_user(user), message="User created successfully")


@app.post("/auth/login", response_model=ApiResponse)
def login(payload: LoginRequest, repos: Repositories = Depends(get_repositories)):
    user = repos.users.find_by_email(payload.email)
    if not user:
        raise NotFoundError("User does not exist")
    if not verify_password(payload.password, user.get("password_hash", "")):
        raise ValidationError("Invalid password")
    # Clients send the returned id back in the X-User-Id header
    return ApiResponse(data=public_user(user), message="User logged in successfully")


# -------------------- Accounts --------------------
@app.get("/users/{user_id}", response_model=ApiResponse)
def get_user(user_id: str, repos: Repositories = Depends(get_repositories)):
    user = repos.users.find_by_id(user_id)
    if not user:
        raise NotFoundError("User not found")
    return ApiResponse(data=public_user(user), message="User data retrieved successfully")


@app.put("/users/{user_id}", response_model=ApiResponse)
async def update_account(
    user_id: str,
    name: Optional[str] = Form(None),
    email: Optional[str] = Form(None),
    password: Optional[str] = Form(None),
    avatar: Optional[UploadFile] = File(None),
    actor_id: str = Depends(get_current_user_id),
    repos: Repositories = Depends(get_repositories),
    storage: LocalMediaStorage = Depends(get_media_storage),
):
    user = repos.users.find_by_id(user_id)
    if not user:
        raise NotFoundError("User not found")
    require_owner(actor_id, user, "You can only update your own account")
    if email:
        email = validate_email(email)
    if (name or email) and repos.users.find_by_name_or_email(name, email, exclude_id=user_id):
        raise ConflictError("User with email or username already exists")

    update_data = {}
    if name:
        update_data["name"] = name
    if email:
        update_data["email"] = email
    if password:
        update_data["password_hash"] = hash_password(password)
    if avatar is not None:
        update_data["avatar_url"] = await storage.save_upload(avatar, "avatars")

    user = repos.users.update_by_id(user_id, update_data)
    return ApiResponse(data=public_user(user), message="Account details updated successfully")


@app.delete("/users/{user_id}", response_model=ApiResponse)
def delete_account(
    user_id: str,
    actor_id: str = Depends(get_current_user_id),
    maintainer: IntegrityMaintainer = Depends(get_maintainer),
):
    maintainer.delete_account(user_id, actor_id)
    return ApiResponse(data={}, message="Account and associated data deleted successfully")


@app.get("/users/{user_id}/videos", response_model=ApiResponse)
def list_user_videos(user_id: str, repos: Repositories = Depends(get_repositories)):
    videos = [to_str_id(v) for v in repos.videos.for_owner(canonical_id(user_id))]
    return ApiResponse(data=videos, message="User videos fetched successfully")


# -------------------- Channels --------------------
@app.post("/channels", status_code=201, response_model=ApiResponse)
def create_channel(
    payload: CreateChannelRequest,
    user_id: str = Depends(get_current_user_id),
    maintainer: IntegrityMaintainer = Depends(get_maintainer),
):
    if not payload.name.strip() or not payload.handle.strip():
        raise ValidationError("Channel name and handle are required")
    channel = maintainer.create_channel(
        user_id, payload.name, payload.handle, payload.description)
    return ApiResponse(status=201, data=to_str_id(channel), message="Channel created successfully")


@app.get("/channels/{channel_id}", response_model=ApiResponse)
def get_channel(channel_id: str, repos: Repositories = Depends(get_repositories)):
    channel = repos.channels.find_by_id(channel_id)
    if not channel:
        raise NotFoundError("Channel not found")
    payload = to_str_id(channel)
    payload["owner"] = public_user(repos.users.find_by_id(channel["owner"])) or channel["owner"]
    payload["videos"] = [to_str_id(v) for v in repos.videos.for_channel(str(channel["_id"]))]
    return ApiResponse(data=payload, message="Channel fetched successfully")


@app.put("/channels/{channel_id}", response_model=ApiResponse)
async def update_channel(
    channel_id: str,
    name: Optional[str] = Form(None),
    handle: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    avatar: Optional[UploadFile] = File(None),
    banner: Optional[UploadFile] = File(None),
    user_id: str = Depends(get_current_user_id),
    repos: Repositories = Depends(get_repositories),
    storage: LocalMediaStorage = Depends(get_media_storage),
):
    channel = repos.channels.find_by_id(channel_id)
    if not channel:
        raise NotFoundError("Channel not found")
    require_owner(user_id, channel, "You are not authorized to update this channel")

    update_data = {}
    if name:
        update_data["name"] = name
    if handle and handle != channel["handle"]:
        if repos.channels.find_by_handle(handle):
            raise ConflictError("Channel handle already taken")
        update_data["handle"] = handle
    if description:
        update_data["description"] = description
    if banner is not None:
        update_data["banner_url"] = await storage.save_upload(banner, "banners")
    if avatar is not None:
        update_data["avatar_url"] = await storage.save_upload(avatar, "avatars")

    channel = repos.channels.update_by_id(channel_id, update_data)
    return ApiResponse(data=to_str_id(channel), message="Channel updated successfully")


@app.delete("/channels/{channel_id}", response_model=ApiResponse)
def delete_channel(
    channel_id: str,
    user_id: str = Depends(get_current_user_id),
    maintainer: IntegrityMaintainer = Depends(get_maintainer),
):
    maintainer.delete_channel(channel_id, user_id)
    return ApiResponse(data={}, message="Channel and associated data deleted successfully")


@app.post("/channels/{channel_id}/subscribe", response_model=ApiResponse)
def subscribe_channel(
    channel_id: str,
    user_id: str = Depends(get_current_user_id),
    maintainer: IntegrityMaintainer = Depends(get_maintainer),
):
    channel = maintainer.subscribe(channel_id, user_id)
    return ApiResponse(data=to_str_id(channel), message="Subscribed successfully")


@app.post("/channels/{channel_id}/unsubscribe", response_model=ApiResponse)
def unsubscribe_channel(
    channel_id: str,
    user_id: str = Depends(get_current_user_id),
    maintainer: IntegrityMaintainer = Depends(get_maintainer),
):
    channel = maintainer.unsubscribe(channel_id, user_id)
    return ApiResponse(data=to_str_id(channel), message="Unsubscribed successfully")


# -------------------- Videos --------------------
@app.post("/videos", status_code=201, response_model=ApiResponse)
async def publish_video(
    title: str = Form(...),
    description: Optional[str] = Form(None),
    video_file: UploadFile = File(...),
    thumbnail: Optional[UploadFile] = File(None),
    user_id: str = Depends(get_current_user_id),
    repos: Repositories = Depends(get_repositories),
    maintainer: IntegrityMaintainer = Depends(get_maintainer),
    storage: LocalMediaStorage = Depends(get_media_storage),
):
    if not title.strip():
        raise ValidationError("Title is required")
    # Checked again under lock by the maintainer; this avoids storing orphan files
    if not (repos.users.find_by_id(user_id) or {}).get("has_channel"):
        raise ValidationError("Create a channel before publishing videos")

    video_url = await storage.save_upload(video_file, "videos")
    thumb_url = None
    if thumbnail is not None:
        thumb_url = await storage.save_upload(thumbnail, "thumbnails")

    try:
        video = await run_in_threadpool(
            maintainer.publish_video,
            user_id,
            title,
            video_url,
            description=description,
            thumbnail_url=thumb_url,
        )
    except Exception:
        storage.discard(video_url, thumb_url)
        raise
    return ApiResponse(status=201, data=to_str_id(video), message="Video published successfully")


@app.get("/videos", response_model=ApiResponse)
def list_videos(limit: int = 20, repos: Repositories = Depends(get_repositories)):
    videos = [to_str_id(v) for v in repos.videos.latest(limit)]
    return ApiResponse(data=videos, message="Videos fetched successfully")


@app.get("/videos/{video_id}", response_model=ApiResponse)
def get_video(video_id: str, repos: Repositories = Depends(get_repositories)):
    v = repos.videos.find_by_id(video_id)
    if not v:
        raise NotFoundError("Video not found")
    channel = repos.channels.find_by_id(v["channel_id"]) if v.get("channel_id") else None
    payload = to_str_id(v)
    payload["channel"] = to_str_id(channel) if channel else None
    return ApiResponse(data=payload, message="Video fetched successfully")


@app.put("/videos/{video_id}", response_model=ApiResponse)
async def update_video(
    video_id: str,
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    thumbnail: Optional[UploadFile] = File(None),
    user_id: str = Depends(get_current_user_id),
    repos: Repositories = Depends(get_repositories),
    storage: LocalMediaStorage = Depends(get_media_storage),
):
    video = repos.videos.find_by_id(video_id)
    if not video:
        raise NotFoundError("Video not found")
    require_owner(user_id, video, "You are not authorized to update this video")

    update_data = {}
    if title:
        update_data["title"] = title
    if description:
        update_data["description"] = description
    if thumbnail is not None:
        update_data["thumbnail_url"] = await storage.save_upload(thumbnail, "thumbnails")

    video = repos.videos.update_by_id(video_id, update_data)
    return ApiResponse(data=to_str_id(video), message="Video updated successfully")


@app.put("/videos/{video_id}/views", response_model=ApiResponse)
def increment_views(video_id: str, repos: Repositories = Depends(get_repositories)):
    video = repos.videos.increment_views(video_id)
    if not video:
        raise NotFoundError("Video not found")
    return ApiResponse(data={"views_count": video["views_count"]}, message="View recorded")


@app.delete("/videos/{video_id}", response_model=ApiResponse)
def delete_video(
    video_id: str,
    user_id: str = Depends(get_current_user_id),
    maintainer: IntegrityMaintainer = Depends(get_maintainer),
):
    maintainer.delete_video(video_id, user_id)
    return ApiResponse(data={}, message="Video deleted successfully")


# -------------------- Likes --------------------
@app.post("/videos/{video_id}/like", response_model=ApiResponse)
def like_video(
    video_id: str,
    user_id: str = Depends(get_current_user_id),
    maintainer: IntegrityMaintainer = Depends(get_maintainer),
):
    video = maintainer.like_video(video_id, user_id)
    return ApiResponse(data=to_str_id(video), message="Video liked successfully")


@app.delete("/videos/{video_id}/like", response_model=ApiResponse)
def unlike_video(
    video_id: str,
    user_id: str = Depends(get_current_user_id),
    maintainer: IntegrityMaintainer = Depends(get_maintainer),
):
    video = maintainer.unlike_video(video_id, user_id)
    return ApiResponse(data=to_str_id(video), message="Like removed successfully")


# -------------------- Comments --------------------
@app.post("/videos/{video_id}/comments", status_code=201, response_model=ApiResponse)
def add_comment(
    video_id: str,
    payload: CommentRequest,
    user_id: str = Depends(get_current_user_id),
    maintainer: IntegrityMaintainer = Depends(get_maintainer),
):
    comment = maintainer.post_comment(video_id, user_id, payload.text)
    return ApiResponse(status=201, data=to_str_id(comment), message="Comment added successfully")


@app.get("/videos/{video_id}/comments", response_model=ApiResponse)
def list_comments(video_id: str, limit: int = 50, repos: Repositories = Depends(get_repositories)):
    comments = []
    for c in repos.comments.for_video(canonical_id(video_id), limit):
        item = to_str_id(c)
        item["user"] = public_user(repos.users.find_by_id(c["user_id"]))
        comments.append(item)
    return ApiResponse(data=comments, message="Comments fetched successfully")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=config.server.host, port=config.server.port)
