"""Image preparation for capture steps and upload-time encoding."""

import asyncio
import base64
import uuid
from io import BytesIO
from pathlib import Path
from typing import Union

from PIL import Image, ImageOps

from gent_client.config import logger
from gent_client.core.errors import ImagePreparationError

CAPTURE_WIDTH = 800
JPEG_QUALITY = 70


def _normalize(image: Image.Image) -> Image.Image:
    image = ImageOps.exif_transpose(image)
    if image.mode != "RGB":
        image = image.convert("RGB")
    return image


def _to_jpeg_bytes(image: Image.Image) -> bytes:
    buffer = BytesIO()
    image.save(buffer, format="JPEG", quality=JPEG_QUALITY)
    return buffer.getvalue()


def resize_capture(source: Union[bytes, str, Path], capture_dir: Union[str, Path], label: str) -> str:
    """
    Downsize a captured photo and write it to the capture directory.

    Args:
        source: Raw image bytes or a path to the photo
        capture_dir: Directory that holds pending captures
        label: Slot name, used as the file prefix

    Returns:
        Path of the written JPEG (the local reference stored in the slot)
    """
    try:
        if isinstance(source, (bytes, bytearray)):
            image = Image.open(BytesIO(source))
        else:
            image = Image.open(source)
        image.load()
        image = _normalize(image)

        if image.width > CAPTURE_WIDTH:
            height = round(image.height * CAPTURE_WIDTH / image.width)
            image = image.resize((CAPTURE_WIDTH, height))

        directory = Path(capture_dir)
        directory.mkdir(parents=True, exist_ok=True)
        target = directory / f"{label}_{uuid.uuid4().hex[:12]}.jpg"
        target.write_bytes(_to_jpeg_bytes(image))
    except Exception as exc:
        logger.error(f"Failed to prepare {label} capture: {exc}")
        raise ImagePreparationError() from exc

    logger.info(f"Saved {label} capture: {target}")
    return str(target)


def encode_for_upload(reference: str) -> str:
    """Return base64 JPEG for a file path, ``file://`` URI or ``data:`` URI."""
    try:
        if reference.startswith("data:"):
            raw = base64.b64decode(reference.split(",", 1)[1])
            image = Image.open(BytesIO(raw))
        else:
            image = Image.open(reference.removeprefix("file://"))
        image.load()
        return base64.b64encode(_to_jpeg_bytes(_normalize(image))).decode("utf-8")
    except Exception as exc:
        logger.error(f"Failed to encode image reference {reference[:64]}: {exc}")
        raise ImagePreparationError() from exc


async def encode_reference(reference: str) -> str:
    return await asyncio.to_thread(encode_for_upload, reference)
