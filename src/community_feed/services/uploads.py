"""Image uploads for posts and comments."""

from __future__ import annotations

import logging
import time

from community_feed.services.backend import BlobStore, LocalImage
from community_feed.services.errors import BlobStoreError

logger = logging.getLogger(__name__)


def object_path(folder: str, owner_id: str, image: LocalImage, index: int = 0) -> str:
    """Return ``<folder>/<owner>_<millis>_<index>.<ext>`` for an upload."""
    millis = time.time_ns() // 1_000_000
    return f"{folder}/{owner_id}_{millis}_{index}.{image.extension}"


async def upload_image(
    blobs: BlobStore,
    bucket: str,
    *,
    folder: str,
    owner_id: str,
    image: LocalImage,
    index: int = 0,
) -> str:
    """Upload ``image`` and return its public URL.

    A rejected first attempt (typically an existing object at the same path)
    is retried once with ``upsert`` enabled.
    """
    path = object_path(folder, owner_id, image, index)
    try:
        return await blobs.upload(bucket, path, image.data, image.content_type)
    except BlobStoreError as exc:
        logger.warning("Upload to %s/%s rejected (%s); retrying with upsert", bucket, path, exc)
        return await blobs.upload(bucket, path, image.data, image.content_type, upsert=True)


async def upload_images(
    blobs: BlobStore,
    bucket: str,
    *,
    folder: str,
    owner_id: str,
    images: list[LocalImage],
) -> list[str]:
    """Upload images one at a time, keeping their order (the first is the cover)."""
    urls: list[str] = []
    for index, image in enumerate(images):
        urls.append(
            await upload_image(
                blobs, bucket, folder=folder, owner_id=owner_id, image=image, index=index
            )
        )
    return urls
