"""Image transcoding for covers and page previews.

Covers are stored as WebP (`to_preview`), archive page previews as JPEG
(`save_page_preview`). Both downscale to a maximum width and never upscale.
"""

from __future__ import annotations

from io import BytesIO
from pathlib import Path
from typing import Union

import requests
from PIL import Image

from .logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 15.0


def is_webp(data: bytes) -> bool:
    """True when `data` starts with a RIFF/WEBP container signature."""
    return len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP"


def _fit_width(im: Image.Image, max_width: int) -> Image.Image:
    if im.width <= max_width:
        return im
    height = max(1, round(im.height * max_width / im.width))
    return im.resize((max_width, height), Image.Resampling.LANCZOS)


def _write(output_path: Path, data: bytes) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(data)


def download_image(url: str, timeout: float = DEFAULT_TIMEOUT) -> bytes:
    response = requests.get(url, headers={"Accept": "image/*"}, timeout=timeout)
    response.raise_for_status()
    return response.content


def to_preview(
    source: Union[bytes, str],
    output_path: Path,
    max_width: int = 600,
    quality: int = 85,
) -> None:
    """Write `source` to `output_path` as a WebP image at most `max_width` wide.

    `source` is either raw image bytes or an http(s) URL to fetch first.
    Bytes that already are WebP are written through untouched, so running
    this on its own output gives back the same bytes.

    Raises on download, decode or write failure.
    """
    if isinstance(source, str):
        source = download_image(source)

    if is_webp(source):
        _write(output_path, source)
        return

    with Image.open(BytesIO(source)) as im:
        im.load()
        converted = im.convert("RGBA" if im.mode in ("RGBA", "LA", "P") else "RGB")
        resized = _fit_width(converted, max_width)
        buffer = BytesIO()
        resized.save(buffer, format="WEBP", quality=quality)

    _write(output_path, buffer.getvalue())
    logger.debug(f"[WebP] Converted and saved: {output_path}")


def save_page_preview(
    img_bytes: bytes,
    output_path: Path,
    max_width: int = 512,
    quality: int = 70,
) -> None:
    """Write a JPEG preview of an archive page."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with Image.open(BytesIO(img_bytes)) as im:
        im = im.convert("RGB")
        im = _fit_width(im, max_width)
        im.save(output_path, format="JPEG", quality=quality, optimize=True, progressive=True)
