import base64
import re
from io import BytesIO
from typing import Optional, Tuple

import requests
from PIL import Image, UnidentifiedImageError

_DATA_URL = re.compile(r"^data:(image/[a-zA-Z0-9.+-]+);base64,(.+)$", re.DOTALL)

_PIL_MIME = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "WEBP": "image/webp",
    "GIF": "image/gif",
    "BMP": "image/bmp",
}


def parse_data_url(url: str) -> Optional[Tuple[str, str]]:
    """Return (mime_type, base64 payload) for an image data URL, else None."""
    match = _DATA_URL.match(url or "")
    if not match:
        return None
    return match.group(1), match.group(2)


def to_data_url(data: bytes, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def sniff_image_mime(data: bytes) -> Optional[str]:
    """MIME type of ``data`` if Pillow recognises it as an image, else None."""
    if not data:
        return None
    try:
        with Image.open(BytesIO(data)) as img:
            img.verify()
            fmt = img.format
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError):
        return None
    return _PIL_MIME.get(fmt or "", f"image/{(fmt or 'png').lower()}")


def load_image_bytes(url: str, timeout_sec: int = 60) -> bytes:
    """Bytes behind a data URL or an http(s) URL."""
    parsed = parse_data_url(url)
    if parsed is not None:
        return base64.b64decode(parsed[1])
    if url.startswith("http://") or url.startswith("https://"):
        resp = requests.get(url, timeout=timeout_sec)
        if resp.status_code != 200:
            raise RuntimeError(f"Download failed: {resp.status_code} {resp.text[:200]}")
        return resp.content
    raise ValueError(f"Unsupported image reference: {url[:40]}...")
