"""Paginated PDF export of a rendered palette snapshot.

The snapshot (one tall bitmap of the whole printable layout) is scaled into
the content area of the page, then cut into horizontal bands of at most one
content-height each. Every band becomes a standalone JPEG placed at
(margin, margin) on its own page.

Document coordinates are millimetres measured from the top-left corner of the
page; ``Document.save`` converts them to reportlab's bottom-left points.
"""
from __future__ import annotations

import enum
import io
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from PIL import Image
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

logger = logging.getLogger(__name__)

A4_WIDTH_MM = 210.0
A4_HEIGHT_MM = 297.0
DEFAULT_MARGIN_MM = 20.0
DEFAULT_JPEG_QUALITY = 95

# Leftover below this (in document units) is float noise, not another page.
_EPSILON = 1e-9


class InvalidInputError(ValueError):
    """A snapshot or page geometry that cannot be exported."""

    def __init__(self, field_name: str, message: str):
        self.field = field_name
        super().__init__(f"{field_name}: {message}")


class ScaleMode(enum.Enum):
    # Fit the content width; fall back to the content height when too tall.
    FIT_PAGE = "fit_page"
    # Fit the content width only and let the height run over several pages.
    FIT_WIDTH = "fit_width"


@dataclass(frozen=True)
class Snapshot:
    image: Image.Image
    width: int
    height: int

    @classmethod
    def from_image(cls, image: Image.Image) -> Snapshot:
        w, h = image.size
        return cls(image=image, width=w, height=h)

    def validate(self) -> None:
        for name, value in (("width", self.width), ("height", self.height)):
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise InvalidInputError(f"snapshot.{name}", f"must be a positive integer, got {value!r}")
        if tuple(self.image.size) != (self.width, self.height):
            raise InvalidInputError(
                "snapshot.image",
                f"pixel size {self.image.size} does not match {self.width}x{self.height}",
            )


@dataclass(frozen=True)
class PageGeometry:
    page_width: float
    page_height: float
    margin: float

    @classmethod
    def a4(cls, margin: float = DEFAULT_MARGIN_MM) -> PageGeometry:
        return cls(A4_WIDTH_MM, A4_HEIGHT_MM, margin)

    @property
    def content_width(self) -> float:
        return self.page_width - 2 * self.margin

    @property
    def content_height(self) -> float:
        return self.page_height - 2 * self.margin

    def validate(self) -> None:
        for name in ("page_width", "page_height", "margin"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                raise InvalidInputError(name, f"must be a finite number, got {value!r}")
            if value <= 0:
                raise InvalidInputError(name, f"must be positive, got {value!r}")
        if self.margin >= self.page_width / 2:
            raise InvalidInputError("margin", f"{self.margin} leaves no content width on a {self.page_width} wide page")
        if self.margin >= self.page_height / 2:
            raise InvalidInputError("margin", f"{self.margin} leaves no content height on a {self.page_height} high page")


@dataclass(frozen=True)
class ScaledImage:
    width: float
    height: float
    # source pixels per document unit
    scale_factor: float


@dataclass(frozen=True)
class PageBand:
    page_index: int
    # offset and height in scaled-image (document) units
    cursor: float
    band_height: float
    # pixel rows [source_top, source_bottom) of the snapshot
    source_top: int
    source_bottom: int

    @property
    def source_height(self) -> int:
        return self.source_bottom - self.source_top


@dataclass(frozen=True)
class PlacedImage:
    data: bytes
    x: float
    y: float
    width: float
    height: float


class Document:
    """Pages of placed images, written out as PDF through reportlab."""

    def __init__(self, page_width: float, page_height: float, title: str | None = None):
        self.page_width = page_width
        self.page_height = page_height
        self.title = title
        self.pages: list[list[PlacedImage]] = [[]]
        self.bands: list[PageBand] = []
        self.scaled: ScaledImage | None = None

    @property
    def page_count(self) -> int:
        return len(self.pages)

    def add_page(self) -> None:
        self.pages.append([])

    def place_image(self, data: bytes, x: float, y: float, width: float, height: float) -> None:
        self.pages[-1].append(PlacedImage(data=data, x=x, y=y, width=width, height=height))

    def save(self, target: str | Path | BinaryIO) -> None:
        if isinstance(target, Path):
            target = str(target)
        c = canvas.Canvas(target, pagesize=(self.page_width * mm, self.page_height * mm))
        if self.title:
            c.setTitle(self.title)
        for placements in self.pages:
            for p in placements:
                c.drawImage(
                    ImageReader(io.BytesIO(p.data)),
                    p.x * mm,
                    (self.page_height - p.y - p.height) * mm,
                    width=p.width * mm,
                    height=p.height * mm,
                )
            c.showPage()
        c.save()

    def to_bytes(self) -> bytes:
        buf = io.BytesIO()
        self.save(buf)
        return buf.getvalue()


def scale_to_content(snapshot: Snapshot, geometry: PageGeometry, mode: ScaleMode = ScaleMode.FIT_PAGE) -> ScaledImage:
    ratio = snapshot.width / snapshot.height
    img_width = geometry.content_width
    img_height = geometry.content_width * snapshot.height / snapshot.width
    if mode is ScaleMode.FIT_PAGE and img_height > geometry.content_height:
        img_height = geometry.content_height
        img_width = geometry.content_height * ratio
    return ScaledImage(width=img_width, height=img_height, scale_factor=snapshot.height / img_height)


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def _clamp_slice(top: int, bottom: int, limit: int) -> tuple[int, int]:
    top = min(max(top, 0), limit)
    bottom = min(max(bottom, 0), limit)
    if bottom <= top:
        # sub-pixel band; keep one row so the page is not blank
        top = min(top, limit - 1)
        bottom = top + 1
    return top, bottom


def plan_bands(scaled: ScaledImage, content_height: float, source_height: int) -> list[PageBand]:
    """Cut the scaled image into page bands, top to bottom.

    Pixel boundaries are rounded half-up from the cumulative cursor, so each
    band starts on the row the previous one stopped at. The last band always
    ends on the snapshot's last row.
    """
    bands: list[PageBand] = []
    remaining = scaled.height
    cursor = 0.0
    page_index = 0
    while remaining > _EPSILON:
        band_height = min(remaining, content_height)
        last = remaining - band_height <= _EPSILON
        top = _round_half_up(cursor * scaled.scale_factor)
        bottom = source_height if last else _round_half_up((cursor + band_height) * scaled.scale_factor)
        clamped = _clamp_slice(top, bottom, source_height)
        if clamped != (top, bottom):
            logger.warning("Clamped band %d rows %d..%d to %d..%d", page_index, top, bottom, *clamped)
        bands.append(PageBand(page_index, cursor, band_height, *clamped))
        remaining -= band_height
        cursor += band_height
        page_index += 1
    return bands


def _flatten_rgb(img: Image.Image) -> Image.Image:
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        bg = Image.new("RGB", img.size, (255, 255, 255))
        bg.paste(rgba, mask=rgba.split()[-1])
        return bg
    return img if img.mode == "RGB" else img.convert("RGB")


class PaginatedExporter:
    def __init__(
        self,
        mode: ScaleMode = ScaleMode.FIT_PAGE,
        quality: int = DEFAULT_JPEG_QUALITY,
        title: str | None = None,
    ):
        if isinstance(quality, bool) or not isinstance(quality, int) or not 1 <= quality <= 100:
            raise InvalidInputError("quality", f"must be an integer in 1..100, got {quality!r}")
        self.mode = mode
        self.quality = quality
        self.title = title

    def _encode_band(self, band: Image.Image) -> bytes:
        buf = io.BytesIO()
        _flatten_rgb(band).save(buf, format="JPEG", quality=self.quality)
        return buf.getvalue()

    def export(self, snapshot: Snapshot, geometry: PageGeometry) -> Document:
        """Lay the snapshot out over as many pages as its scaled height needs.

        Raises InvalidInputError before any page is produced when the snapshot
        or geometry is unusable.
        """
        snapshot.validate()
        geometry.validate()

        scaled = scale_to_content(snapshot, geometry, self.mode)
        bands = plan_bands(scaled, geometry.content_height, snapshot.height)

        doc = Document(geometry.page_width, geometry.page_height, title=self.title)
        doc.scaled = scaled
        for band in bands:
            if band.page_index > 0:
                doc.add_page()
            piece = snapshot.image.crop((0, band.source_top, snapshot.width, band.source_bottom))
            doc.place_image(self._encode_band(piece), geometry.margin, geometry.margin, scaled.width, band.band_height)
            doc.bands.append(band)
            logger.debug(
                "Page %d: rows %d..%d -> %.2f x %.2f",
                band.page_index + 1, band.source_top, band.source_bottom, scaled.width, band.band_height,
            )

        logger.info(
            "Exported %dx%d snapshot onto %d page(s) (%.2f x %.2f)",
            snapshot.width, snapshot.height, doc.page_count, scaled.width, scaled.height,
        )
        return doc


def export_pdf(
    snapshot: Snapshot,
    target: str | Path | BinaryIO,
    geometry: PageGeometry | None = None,
    mode: ScaleMode = ScaleMode.FIT_PAGE,
    quality: int = DEFAULT_JPEG_QUALITY,
    title: str | None = None,
) -> Document:
    doc = PaginatedExporter(mode=mode, quality=quality, title=title).export(snapshot, geometry or PageGeometry.a4())
    doc.save(target)
    return doc
