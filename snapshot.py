"""Rasterise the printable palette layout with Pillow.

The layout matches what gets printed: a centred title, the selected palette
as round swatches with their hex codes, a grid of reference photos (when any
colour has some) and the notes box. Sizes are CSS-like pixels at ``scale=1``;
the page content column is 170 mm at 96 dpi.
"""
from __future__ import annotations

import logging
from functools import lru_cache

from PIL import Image, ImageColor, ImageDraw, ImageFont

from images import cover_crop, data_url_to_image
from palette import PaletteDraft
from pdf_export import Snapshot

logger = logging.getLogger(__name__)

TITLE = "Worship Service Styles"
EMPTY_NOTES = "No notes."

CONTENT_WIDTH_PX = 643  # 170mm @ 96dpi
PADDING = 38  # 10mm
SECTION_GAP = 20
SWATCH = 60
SWATCH_GAP = 12
THUMB_MIN_WIDTH = 120
THUMB_HEIGHT = 120

BACKGROUND = "#ffffff"
TITLE_COLOR = "#4338ca"
HEADING_COLOR = "#1f2937"
RULE_COLOR = "#e5e7eb"
SWATCH_BORDER = "#d1d5db"
LABEL_COLOR = "#4b5563"
NOTES_COLOR = "#374151"
NOTES_BG = "#f9fafb"


@lru_cache(maxsize=32)
def _font(size: int, bold: bool = False) -> ImageFont.ImageFont:
    names = ("DejaVuSans-Bold.ttf", "Arial Bold.ttf", "arialbd.ttf") if bold else ("DejaVuSans.ttf", "Arial.ttf", "arial.ttf")
    for name in names:
        try:
            return ImageFont.truetype(name, size)
        except OSError:
            continue
    return ImageFont.load_default(size=size)


def _wrap(text: str, font: ImageFont.ImageFont, width: int) -> list[str]:
    lines: list[str] = []
    for paragraph in text.splitlines() or [""]:
        current = ""
        for word in paragraph.split(" "):
            candidate = f"{current} {word}" if current else word
            if current and font.getlength(candidate) > width:
                lines.append(current)
                current = word
            else:
                current = candidate
        lines.append(current)
    return lines


def _swatch_fill(color: str) -> str:
    try:
        ImageColor.getrgb(color)
    except ValueError:
        return BACKGROUND
    return color


class SnapshotRenderer:
    """Two passes over the same layout code: measure, then draw."""

    def __init__(self, draft: PaletteDraft, scale: int = 2):
        self.draft = draft
        self.s = max(1, int(scale))
        self.width = (CONTENT_WIDTH_PX + 2 * PADDING) * self.s
        self.photos = self._decode_photos()

    def _px(self, v: float) -> int:
        return int(round(v * self.s))

    def _decode_photos(self) -> list[Image.Image]:
        photos = []
        for url in self.draft.all_images:
            try:
                photos.append(data_url_to_image(url).convert("RGB"))
            except ValueError as e:
                logger.warning("Skipping reference image in snapshot: %s", e)
        return photos

    def render(self) -> Snapshot:
        height = self._layout(None)
        img = Image.new("RGB", (self.width, height), BACKGROUND)
        self._layout(ImageDraw.Draw(img), img)
        return Snapshot.from_image(img)

    def _layout(self, draw: ImageDraw.ImageDraw | None, img: Image.Image | None = None) -> int:
        left = self._px(PADDING)
        inner = self._px(CONTENT_WIDTH_PX)
        y = self._px(PADDING)

        font = _font(self._px(24), bold=True)
        if draw:
            w = draw.textlength(TITLE, font=font)
            draw.text((left + (inner - w) / 2, y), TITLE, fill=TITLE_COLOR, font=font)
        y += self._px(24 * 1.4) + self._px(SECTION_GAP)

        y = self._heading(draw, "Selected Palette", left, inner, y)
        y = self._swatches(draw, left, inner, y) + self._px(SECTION_GAP)

        if self.photos:
            y = self._heading(draw, "Reference Images", left, inner, y)
            y = self._photos(draw, img, left, inner, y) + self._px(SECTION_GAP)

        y = self._heading(draw, "Notes", left, inner, y)
        y = self._notes(draw, left, inner, y)
        return y + self._px(PADDING)

    def _heading(self, draw, text: str, left: int, inner: int, y: int) -> int:
        font = _font(self._px(18), bold=True)
        text_h = self._px(18 * 1.4)
        if draw:
            draw.text((left, y), text, fill=HEADING_COLOR, font=font)
            rule_y = y + text_h + self._px(4)
            draw.rectangle([left, rule_y, left + inner, rule_y + self._px(2) - 1], fill=RULE_COLOR)
        return y + text_h + self._px(4) + self._px(2) + self._px(12)

    def _swatches(self, draw, left: int, inner: int, y: int) -> int:
        size, gap = self._px(SWATCH), self._px(SWATCH_GAP)
        label_font = _font(self._px(10))
        label_h = self._px(10 * 1.4)
        cell_h = size + self._px(4) + label_h + self._px(8)
        per_row = max(1, (inner + gap) // (size + gap))
        colors = self.draft.colors
        rows = (len(colors) + per_row - 1) // per_row
        if draw:
            for i, entry in enumerate(colors):
                x = left + (i % per_row) * (size + gap)
                top = y + (i // per_row) * (cell_h + gap)
                draw.ellipse(
                    [x, top, x + size - 1, top + size - 1],
                    fill=_swatch_fill(entry.color),
                    outline=SWATCH_BORDER,
                    width=self._px(2),
                )
                label = (entry.color or "").upper()
                lw = draw.textlength(label, font=label_font)
                draw.text((x + (size - lw) / 2, top + size + self._px(4)), label, fill=LABEL_COLOR, font=label_font)
        return y + rows * cell_h + max(0, rows - 1) * gap

    def _photos(self, draw, img: Image.Image | None, left: int, inner: int, y: int) -> int:
        gap = self._px(SWATCH_GAP)
        cols = max(1, (inner + gap) // (self._px(THUMB_MIN_WIDTH) + gap))
        cell_w = (inner - gap * (cols - 1)) // cols
        cell_h = self._px(THUMB_HEIGHT)
        rows = (len(self.photos) + cols - 1) // cols
        if draw and img is not None:
            for i, photo in enumerate(self.photos):
                x = left + (i % cols) * (cell_w + gap)
                top = y + (i // cols) * (cell_h + gap)
                img.paste(cover_crop(photo, cell_w, cell_h), (x, top))
                draw.rounded_rectangle(
                    [x, top, x + cell_w - 1, top + cell_h - 1],
                    radius=self._px(8),
                    outline=SWATCH_BORDER,
                    width=max(1, self._px(1)),
                )
        return y + rows * cell_h + max(0, rows - 1) * gap

    def _notes(self, draw, left: int, inner: int, y: int) -> int:
        pad = self._px(12)
        font = _font(self._px(12))
        line_h = self._px(12 * 1.5)
        lines = _wrap(self.draft.notes.strip() or EMPTY_NOTES, font, inner - 2 * pad)
        box_h = 2 * pad + len(lines) * line_h
        if draw:
            draw.rounded_rectangle(
                [left, y, left + inner - 1, y + box_h - 1],
                radius=self._px(6),
                fill=NOTES_BG,
                outline=RULE_COLOR,
                width=max(1, self._px(1)),
            )
            for i, line in enumerate(lines):
                draw.text((left + pad, y + pad + i * line_h), line, fill=NOTES_COLOR, font=font)
        return y + box_h


def render_snapshot(draft: PaletteDraft, scale: int = 2) -> Snapshot:
    return SnapshotRenderer(draft, scale=scale).render()
