"""
Media host: S3 compatible object storage for videos and images.

upload() and delete() never raise for host failures, they log and return
None; callers treat None as "the operation failed, do not proceed". The
local temporary file handed to upload() is removed whether or not the
upload succeeds.
"""

import asyncio
import logging
import mimetypes
import os
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple
from urllib.parse import urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from bson import ObjectId
from fastapi import Request, UploadFile
from fastapi.concurrency import run_in_threadpool

from settings import Settings

logger = logging.getLogger(__name__)


@dataclass
class MediaAsset:
    url: str
    public_id: str
    duration: Optional[float] = None


class MediaHost:
    def __init__(self, client, bucket: str, public_url: str = ""):
        self.client = client
        self.bucket = bucket
        self.public_url = public_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings) -> "MediaHost":
        client = boto3.client(
            "s3",
            endpoint_url=settings.media_endpoint_url,
            aws_access_key_id=settings.media_access_key,
            aws_secret_access_key=settings.media_secret_key,
            region_name=settings.media_region,
        )
        public_url = settings.media_public_url
        if not public_url:
            base = settings.media_endpoint_url or "https://s3.amazonaws.com"
            public_url = f"{base.rstrip('/')}/{settings.media_bucket}"
        return cls(client, settings.media_bucket, public_url)

    def url_for(self, public_id: str) -> str:
        return f"{self.public_url}/{public_id}"

    def public_id_from_url(self, url: Optional[str]) -> Optional[str]:
        """Object key of a URL this host produced, else its last path segment."""
        if not url:
            return None
        if self.public_url and url.startswith(self.public_url + "/"):
            return url[len(self.public_url) + 1:]
        path = urlparse(url).path
        return path.rsplit("/", 1)[-1] or None

    def upload(self, local_path: Optional[str], folder: str = "media") -> Optional[MediaAsset]:
        if not local_path:
            return None
        ext = os.path.splitext(local_path)[1]
        public_id = f"{folder}/{ObjectId()}{ext}"
        content_type = mimetypes.guess_type(local_path)[0] or "application/octet-stream"
        try:
            self.client.upload_file(
                local_path,
                self.bucket,
                public_id,
                ExtraArgs={"ContentType": content_type},
            )
            logger.info("Uploaded %s to %s", os.path.basename(local_path), public_id)
            return MediaAsset(url=self.url_for(public_id), public_id=public_id)
        except (BotoCoreError, ClientError, OSError) as e:
            logger.error("Media upload failed for %s: %s", os.path.basename(local_path), e)
            return None
        finally:
            discard(local_path)

    def delete(self, public_id: Optional[str]) -> Optional[dict]:
        if not public_id:
            return None
        try:
            self.client.delete_object(Bucket=self.bucket, Key=public_id)
            return {"result": "ok", "publicId": public_id}
        except (BotoCoreError, ClientError) as e:
            logger.error("Failed to delete %s from media host: %s", public_id, e)
            return None

    def delete_url(self, url: Optional[str]) -> Optional[dict]:
        return self.delete(self.public_id_from_url(url))


def get_media(request: Request) -> MediaHost:
    return request.app.state.media


def discard(path: Optional[str]) -> None:
    if path and os.path.exists(path):
        try:
            os.remove(path)
        except OSError as e:
            logger.warning("Could not remove temporary file %s: %s", path, e)


async def save_upload(upload: UploadFile, upload_dir: str) -> str:
    """Write an incoming file to a temporary local path."""
    os.makedirs(upload_dir, exist_ok=True)
    ext = os.path.splitext(upload.filename or "")[1]
    path = os.path.join(upload_dir, f"{ObjectId()}{ext}")
    with open(path, "wb") as f:
        f.write(await upload.read())
    return path


async def upload_files(
    media: MediaHost,
    files: Sequence[Tuple[UploadFile, str]],
    upload_dir: str,
) -> List[Optional[MediaAsset]]:
    """Upload (file, folder) pairs concurrently, results in input order.

    If any upload fails, the ones that succeeded are deleted again so a
    failed request leaves nothing behind on the host.
    """
    paths: List[str] = []
    try:
        for upload, _ in files:
            paths.append(await save_upload(upload, upload_dir))
    except OSError:
        for path in paths:
            discard(path)
        raise

    assets = await asyncio.gather(*(
        run_in_threadpool(media.upload, path, folder)
        for path, (_, folder) in zip(paths, files)
    ))
    if any(asset is None for asset in assets):
        for asset in assets:
            if asset is not None:
                await run_in_threadpool(media.delete, asset.public_id)
    return list(assets)
