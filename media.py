"""
Local media storage for uploaded videos, thumbnails, avatars and banners.

Files are written under the upload directory and served by the app's
``/static`` mount, so the returned URL is relative to the API host.
"""

import logging
import os
import shutil

from bson import ObjectId
from fastapi import UploadFile

logger = logging.getLogger(__name__)

FOLDERS = ("videos", "thumbnails", "avatars", "banners")

DEFAULT_EXTENSIONS = {
    "videos": ".mp4",
    "thumbnails": ".jpg",
    "avatars": ".jpg",
    "banners": ".jpg",
}


class LocalMediaStorage:
    def __init__(self, root_dir: str, base_url: str = "/static"):
        self.root_dir = root_dir
        self.base_url = base_url.rstrip("/")
        for folder in FOLDERS:
            os.makedirs(os.path.join(root_dir, folder), exist_ok=True)

    def _target(self, folder: str, original_name: str):
        if folder not in FOLDERS:
            raise ValueError(f"Unknown media folder: {folder}")
        ext = os.path.splitext(original_name or "")[1] or DEFAULT_EXTENSIONS[folder]
        filename = f"{ObjectId()}{ext}"
        return os.path.join(self.root_dir, folder, filename), f"{self.base_url}/{folder}/{filename}"

    async def save_upload(self, upload: UploadFile, folder: str) -> str:
        """Persist an uploaded file and return its public URL."""
        path, url = self._target(folder, upload.filename)
        with open(path, "wb") as f:
            f.write(await upload.read())
        logger.info(f"Stored upload {upload.filename!r} as {url}")
        return url

    def store_file(self, local_path: str, folder: str) -> str:
        """Copy a file already on disk into storage and return its public URL."""
        path, url = self._target(folder, os.path.basename(local_path))
        shutil.copyfile(local_path, path)
        logger.info(f"Stored file {local_path} as {url}")
        return url

    def path_for(self, url: str) -> str:
        """Map a URL returned by this storage back to its file path."""
        relative = url[len(self.base_url):].lstrip("/")
        return os.path.join(self.root_dir, *relative.split("/"))

    def discard(self, *urls) -> None:
        """Remove stored files; URLs that are None or already gone are skipped."""
        for url in urls:
            if not url:
                continue
            path = self.path_for(url)
            if os.path.exists(path):
                os.remove(path)
                logger.info(f"Discarded {url}")
