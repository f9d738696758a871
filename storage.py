"""Object storage for resume files.

Objects live under ``<storage_dir>/resumes/<key>`` where keys look like
``<user_id>/<epoch_millis>.<ext>``. Download links are short-lived HS256
JWTs naming the object key, verified by the ``/storage/resumes/download``
route.
"""
from __future__ import annotations

import time
from pathlib import Path, PurePosixPath
from typing import Iterable, List
from urllib.parse import urlencode

import structlog
from jose import JWTError, jwt

from exceptions import ForbiddenError, StorageError
from settings import Settings

logger = structlog.get_logger(__name__)

BUCKET = "resumes"
_TOKEN_ALGORITHM = "HS256"


class ResumeStorage:
    def __init__(self, root: str, signing_key: str, base_url: str) -> None:
        self.root = Path(root) / BUCKET
        self.signing_key = signing_key
        self.base_url = base_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings) -> "ResumeStorage":
        return cls(settings.storage_dir, settings.storage_signing_key, settings.app_base_url)

    def _resolve(self, key: str) -> Path:
        parts = PurePosixPath(key).parts
        if not key or key.startswith("/") or ".." in parts:
            raise StorageError(f"Invalid object key: {key!r}")
        return self.root.joinpath(*parts)

    def exists(self, key: str) -> bool:
        return self._resolve(key).is_file()

    def upload(self, key: str, data: bytes) -> str:
        target = self._resolve(key)
        if target.exists():
            raise StorageError("The resource already exists")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Failed to upload {key}: {exc}") from exc
        logger.info("Stored object", bucket=BUCKET, key=key, size=len(data))
        return key

    def download(self, key: str) -> bytes:
        target = self._resolve(key)
        if not target.is_file():
            raise StorageError(f"Object not found: {key}")
        try:
            return target.read_bytes()
        except OSError as exc:
            raise StorageError(f"Failed to download {key}: {exc}") from exc

    def remove(self, keys: Iterable[str]) -> List[str]:
        """Delete objects, returning the keys that existed. Missing keys are ignored."""
        removed = []
        for key in keys:
            target = self._resolve(key)
            if not target.exists():
                continue
            try:
                target.unlink()
            except OSError as exc:
                raise StorageError(f"Failed to remove {key}: {exc}") from exc
            removed.append(key)
        logger.info("Removed objects", bucket=BUCKET, keys=removed)
        return removed

    def create_signed_url(self, key: str, expires_in: int) -> str:
        if not self.exists(key):
            raise StorageError(f"Object not found: {key}")
        token = jwt.encode(
            {"bucket": BUCKET, "key": key, "exp": int(time.time()) + expires_in},
            self.signing_key,
            algorithm=_TOKEN_ALGORITHM,
        )
        return f"{self.base_url}/storage/{BUCKET}/download?{urlencode({'token': token})}"

    def resolve_signed_token(self, token: str) -> str:
        """Return the object key a download token grants access to."""
        try:
            claims = jwt.decode(token, self.signing_key, algorithms=[_TOKEN_ALGORITHM])
        except JWTError as exc:
            logger.warning("Rejected download token", exc=str(exc))
            raise ForbiddenError("Invalid or expired download link") from exc
        if claims.get("bucket") != BUCKET or not claims.get("key"):
            raise ForbiddenError("Invalid or expired download link")
        return claims["key"]
