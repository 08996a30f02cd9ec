import logging
from io import BytesIO
from typing import List, Tuple

import discord
import httpx
from PIL import Image, UnidentifiedImageError

from .model import ImageResult, Outcome

logger = logging.getLogger(__name__)

PROCESSING_TEXT = "*Processing...*"
APOLOGY = "Encountered an error while processing your request. Please try again."

# Discord rejects messages with more attachments than this
MAX_ATTACHMENTS = 10
# ... and message content longer than this
MAX_MESSAGE_LENGTH = 2000
MAX_ERROR_LENGTH = 300


def _shorten(text: str, limit: int = MAX_ERROR_LENGTH) -> str:
    # one line per error, so the "> " quote covers all of it
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def _with_errors(header: str, errors: List[str]) -> str:
    lines = [f"> {_shorten(err)}" for err in errors]
    text = "\n".join([header, *lines])
    while len(text) > MAX_MESSAGE_LENGTH and lines:
        lines.pop()
        text = "\n".join([header, *lines, f"> ...and {len(errors) - len(lines)} more"])
    return text


def format_error_block(errors: List[str]) -> str:
    return _with_errors(APOLOGY, errors)


def format_partial_failure(errors: List[str], attempts: int) -> str:
    return _with_errors(f"{len(errors)} of {attempts} attempts failed:", errors)


def image_format(data: bytes) -> str:
    """Return the lowercase image format (png, jpeg, ...) or raise ValueError if not an image."""
    try:
        with Image.open(BytesIO(data)) as img:
            fmt = img.format
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise ValueError("Backend returned data that is not an image") from e
    return (fmt or "png").lower()


async def download_image(http: httpx.AsyncClient, url: str) -> bytes:
    r = await http.get(url)
    r.raise_for_status()
    return r.content


async def _payloads(result: ImageResult, http: httpx.AsyncClient) -> List[bytes]:
    if result.content is not None:
        return [result.content]
    return [await download_image(http, url) for url in result.urls]


async def collect_attachments(
    outcome: Outcome, http: httpx.AsyncClient
) -> Tuple[List[discord.File], List[str]]:
    """
    Turn every image in the outcome into a discord.File.

    Remote references are downloaded first. Anything that fails to
    download or does not decode as an image is reported as an error line
    instead of an attachment.
    """
    files: List[discord.File] = []
    errors: List[str] = []

    for result in outcome.images:
        try:
            payloads = await _payloads(result, http)
        except httpx.HTTPError as e:
            logger.error("[Reply] Failed to download image: %s", e)
            errors.append(f"Failed to download image: {e}")
            continue

        for data in payloads:
            try:
                ext = image_format(data)
            except ValueError as e:
                errors.append(str(e))
                continue
            files.append(discord.File(BytesIO(data), filename=f"image_{len(files) + 1}.{ext}"))

    if len(files) > MAX_ATTACHMENTS:
        logger.info("[Reply] Dropping %d images over the attachment limit", len(files) - MAX_ATTACHMENTS)
        files = files[:MAX_ATTACHMENTS]

    return files, errors
