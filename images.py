"""Pillow helpers for reference photos: data URLs, downscaling and cropping."""
import base64
import binascii
import io
import logging
import re

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w/+.-]+)?(?P<b64>;base64)?,(?P<data>.*)$", re.DOTALL)


def _resample_filter():
    try:
        return Image.Resampling.LANCZOS
    except AttributeError:
        return Image.LANCZOS


def resize_preserve(img: Image.Image, max_side: int = 512) -> Image.Image:
    """Downscale so the longest side is at most ``max_side``; never upscales."""
    w, h = img.size
    s = max(w, h)
    if s <= max_side:
        return img
    scale = max_side / float(s)
    new_size = (max(1, int(w * scale)), max(1, int(h * scale)))
    return img.resize(new_size, _resample_filter())


def cover_crop(img: Image.Image, width: int, height: int) -> Image.Image:
    """Scale and centre-crop to exactly ``width`` x ``height`` (CSS object-fit: cover)."""
    w, h = img.size
    scale = max(width / float(w), height / float(h))
    scaled = img.resize((max(width, round(w * scale)), max(height, round(h * scale))), _resample_filter())
    sw, sh = scaled.size
    left = (sw - width) // 2
    top = (sh - height) // 2
    return scaled.crop((left, top, left + width, top + height))


def image_to_data_url(img: Image.Image, max_side: int | None = 1024, fmt: str = "PNG") -> str:
    if max_side:
        img = resize_preserve(img, max_side)
    fmt = fmt.upper()
    if fmt == "JPEG" and img.mode not in ("RGB", "L"):
        img = img.convert("RGB")
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    mime = "image/jpeg" if fmt == "JPEG" else f"image/{fmt.lower()}"
    return f"data:{mime};base64,{base64.b64encode(buf.getvalue()).decode('ascii')}"


def data_url_to_image(data_url: str) -> Image.Image:
    """Decode a ``data:image/...;base64,`` URL into a loaded Pillow image.

    Raises ValueError when the string is not a decodable image data URL.
    """
    m = _DATA_URL_RE.match((data_url or "").strip())
    if not m or not m.group("b64"):
        raise ValueError("not a base64 data URL")
    try:
        raw = base64.b64decode(m.group("data"), validate=False)
        img = Image.open(io.BytesIO(raw))
        img.load()
    except (binascii.Error, UnidentifiedImageError, OSError) as e:
        raise ValueError(f"undecodable image data: {e}") from e
    return img
