import logging

import httpx
from echopages.config import STATIC_FILES_URL

logger = logging.getLogger(__name__)


def audio_chunk_path(chapter_id: int, idx: int) -> str:
    return f"audio/{chapter_id}/{idx}.mp3"


def public_url(path: str) -> str:
    return f"{STATIC_FILES_URL}/{path}"


async def upload(data: bytes, path: str, content_type: str = "audio/mpeg") -> str:
    """
    Store `data` at `path` on the static file server, overwriting any
    existing object, and return its public URL.
    """
    if not data:
        raise ValueError(f"Refusing to upload empty file to {path}")

    async with httpx.AsyncClient() as client:
        response = await client.post(
            public_url(path),
            files={"file": (path.rsplit("/", 1)[-1], data, content_type)},
        )
        response.raise_for_status()

    logger.debug("Uploaded %d bytes to %s", len(data), path)
    return public_url(path)


async def remove(paths: list[str]) -> int:
    """Delete stored objects; missing ones are skipped. Returns how many were deleted."""
    deleted = 0
    async with httpx.AsyncClient() as client:
        for path in paths:
            try:
                response = await client.delete(public_url(path))
            except httpx.RequestError as e:
                logger.error("Could not delete %s: %s", path, e)
                continue
            if response.status_code == 404:
                continue
            response.raise_for_status()
            deleted += 1
    return deleted
