"""Object storage backends for message attachments.

Firebase Storage is used when ``FIREBASE_ENABLED`` is set; otherwise files land
in ``UPLOAD_DIR`` and are served by the API under ``/uploads``.
"""

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Optional
from urllib.parse import quote

import firebase_admin
from firebase_admin import credentials, storage
from firebase_admin.exceptions import FirebaseError
from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError

from kiram_chat.config import settings
from kiram_chat.core.exceptions import UploadFailed

logger = logging.getLogger(__name__)

# credential refresh and transport failures surface as GoogleAuthError, not GoogleAPIError
STORAGE_ERRORS = (GoogleAPIError, GoogleAuthError, FirebaseError, OSError, ValueError)


class LocalFileStorage:

    def __init__(self, root: str, base_url: str) -> None:
        self._root = Path(root)
        self._base_url = base_url.rstrip("/")

    def _resolve(self, path: str) -> Path:
        full_path = (self._root / path).resolve()
        if not str(full_path).startswith(str(self._root.resolve())):
            raise UploadFailed(f"Unsafe storage path: {path}")
        return full_path

    def _write(self, full_path: Path, data: bytes) -> None:
        full_path.parent.mkdir(parents=True, exist_ok=True)
        with open(full_path, "wb") as f:
            f.write(data)

    async def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> None:
        full_path = self._resolve(path)
        try:
            await asyncio.to_thread(self._write, full_path, data)
        except OSError as e:
            logger.error(f"Failed to save attachment {path}: {e}")
            raise UploadFailed(f"Could not store {path}") from e
        logger.info(f"Attachment saved: {full_path}")

    async def get_download_url(self, path: str) -> str:
        if not self._resolve(path).is_file():
            raise UploadFailed(f"Stored object missing: {path}")
        return f"{self._base_url}/uploads/{path}"


class FirebaseStorage:
    """Firebase Storage bucket accessed through the Admin SDK (sync calls run in a thread)."""

    TOKEN_METADATA_KEY = "firebaseStorageDownloadTokens"

    def __init__(self, credentials_path: str, bucket_name: Optional[str]) -> None:
        self._credentials_path = credentials_path
        self._bucket_name = bucket_name
        self._bucket = None

    def _get_bucket(self):
        if self._bucket is not None:
            return self._bucket
        try:
            firebase_admin.get_app()
        except ValueError:
            cred = credentials.Certificate(self._credentials_path)
            firebase_admin.initialize_app(cred, {"storageBucket": self._bucket_name})
            logger.info(f"Firebase initialized for bucket: {self._bucket_name}")
        self._bucket = storage.bucket(self._bucket_name)
        return self._bucket

    def _upload(self, path: str, data: bytes, content_type: Optional[str]) -> None:
        blob = self._get_bucket().blob(path)
        blob.metadata = {self.TOKEN_METADATA_KEY: str(uuid.uuid4())}
        blob.upload_from_string(data, content_type=content_type)

    def _download_url(self, path: str) -> str:
        bucket = self._get_bucket()
        blob = bucket.get_blob(path)
        if blob is None:
            raise UploadFailed(f"Stored object missing: {path}")
        token = (blob.metadata or {}).get(self.TOKEN_METADATA_KEY)
        url = f"https://firebasestorage.googleapis.com/v0/b/{bucket.name}/o/{quote(path, safe='')}?alt=media"
        return f"{url}&token={token}" if token else url

    async def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> None:
        try:
            await asyncio.to_thread(self._upload, path, data, content_type)
        except STORAGE_ERRORS as e:
            logger.error(f"Firebase upload failed for {path}: {e}")
            raise UploadFailed(f"Could not store {path}") from e

    async def get_download_url(self, path: str) -> str:
        try:
            return await asyncio.to_thread(self._download_url, path)
        except STORAGE_ERRORS as e:
            logger.error(f"Firebase download URL lookup failed for {path}: {e}")
            raise UploadFailed(f"Could not resolve URL for {path}") from e


_storage = None


def get_storage():
    global _storage
    if _storage is not None:
        return _storage
    if settings.FIREBASE_ENABLED:
        _storage = FirebaseStorage(settings.FIREBASE_CREDENTIALS_PATH, settings.FIREBASE_STORAGE_BUCKET)
    else:
        _storage = LocalFileStorage(settings.UPLOAD_DIR, settings.PUBLIC_BASE_URL)
    return _storage
