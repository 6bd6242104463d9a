"""Pagination tests for the PDF exporter."""
import io
import math
import re

import pytest
from PIL import Image

from pdf_export import (
    Document,
    InvalidInputError,
    PageGeometry,
    PaginatedExporter,
    ScaledImage,
    ScaleMode,
    Snapshot,
    export_pdf,
    plan_bands,
    scale_to_content,
)

A4 = PageGeometry(210, 297, 20)


def make_snapshot(width: int, height: int, mode: str = "RGB") -> Snapshot:
    img = Image.new(mode, (width, height), "white")
    # a gradient makes each band visibly different
    for y in range(0, height, max(1, height // 50)):
        img.paste((y % 256, 80, 160) if mode == "RGB" else (y % 256, 80, 160, 255), (0, y, width, min(height, y + 1)))
    return Snapshot.from_image(img)


def pdf_page_count(data: bytes) -> int:
    return len(re.findall(rb"/Type /Page[^s]", data))


def test_tall_snapshot_fits_on_one_a4_page():
    snap = make_snapshot(1000, 3000)
    doc = PaginatedExporter().export(snap, A4)

    assert A4.content_width == 170
    assert A4.content_height == 257
    assert doc.scaled.height == pytest.approx(257)
    assert doc.scaled.width == pytest.approx(257 * 1000 / 3000)
    assert doc.page_count == 1
    assert len(doc.bands) == 1
    band = doc.bands[0]
    assert (band.source_top, band.source_bottom) == (0, 3000)

    (placed,) = doc.pages[0]
    assert (placed.x, placed.y) == (20, 20)
    assert placed.width == pytest.approx(85.6667, abs=1e-3)
    assert placed.height == pytest.approx(257)


def test_wide_snapshot_is_width_bound():
    doc = PaginatedExporter().export(make_snapshot(1700, 500), A4)
    assert doc.scaled.width == pytest.approx(170)
    assert doc.scaled.height == pytest.approx(50)
    assert doc.page_count == 1


def test_exact_multiple_of_content_height_gives_that_many_pages():
    # 170 px wide fits the 170mm column 1:1, so 771 px is exactly 3 x 257mm
    snap = make_snapshot(170, 771)
    doc = PaginatedExporter(mode=ScaleMode.FIT_WIDTH).export(snap, A4)

    assert doc.page_count == 3
    assert [b.band_height for b in doc.bands] == pytest.approx([257, 257, 257])
    assert [(b.source_top, b.source_bottom) for b in doc.bands] == [(0, 257), (257, 514), (514, 771)]
    for page in doc.pages:
        assert len(page) == 1
        assert (page[0].x, page[0].y) == (20, 20)


def test_band_images_keep_snapshot_width():
    snap = make_snapshot(340, 1500)
    doc = PaginatedExporter(mode=ScaleMode.FIT_WIDTH).export(snap, A4)

    for band, page in zip(doc.bands, doc.pages):
        img = Image.open(io.BytesIO(page[0].data))
        assert img.format == "JPEG"
        assert img.size == (340, band.source_height)


@pytest.mark.parametrize("mode", [ScaleMode.FIT_PAGE, ScaleMode.FIT_WIDTH])
@pytest.mark.parametrize(
    "width,height",
    [(1, 1), (1000, 3000), (3000, 1000), (100, 2000), (643, 2917), (999, 10001), (37, 4096)],
)
@pytest.mark.parametrize(
    "geometry",
    [A4, PageGeometry(215.9, 279.4, 12.7), PageGeometry(100, 60, 5), PageGeometry(297, 210, 0.5)],
)
def test_bands_cover_the_image_once(mode, width, height, geometry):
    snap = Snapshot(image=Image.new("RGB", (width, height)), width=width, height=height)
    scaled = scale_to_content(snap, geometry, mode)
    bands = plan_bands(scaled, geometry.content_height, height)

    assert sum(b.band_height for b in bands) == pytest.approx(scaled.height)
    assert len(bands) == math.ceil(scaled.height / geometry.content_height - 1e-9)
    assert [b.page_index for b in bands] == list(range(len(bands)))

    assert bands[0].source_top == 0
    assert bands[-1].source_bottom == height
    for prev, nxt in zip(bands, bands[1:]):
        # shared boundary; a sub-pixel band may reuse the previous row
        assert 0 <= prev.source_bottom - nxt.source_top <= 1
        assert nxt.cursor == pytest.approx(prev.cursor + prev.band_height)
    if height >= 10 * len(bands):
        assert all(p.source_bottom == n.source_top for p, n in zip(bands, bands[1:]))
    for b in bands:
        assert 0 < b.band_height <= geometry.content_height + 1e-9
        assert b.source_height >= 1

    if mode is ScaleMode.FIT_PAGE:
        assert scaled.width <= geometry.content_width + 1e-9
        assert scaled.height <= geometry.content_height + 1e-9
        assert len(bands) == 1


def test_export_is_repeatable():
    snap = make_snapshot(400, 5000)
    exporter = PaginatedExporter(mode=ScaleMode.FIT_WIDTH)
    first = exporter.export(snap, A4)
    second = exporter.export(snap, A4)
    assert first.page_count == second.page_count
    assert first.bands == second.bands


def test_out_of_range_rows_are_clamped():
    # a scale factor that overshoots the real pixel height
    bands = plan_bands(ScaledImage(width=10, height=10.0, scale_factor=1.5), content_height=4, source_height=10)
    assert len(bands) == 3
    for b in bands:
        assert 0 <= b.source_top < b.source_bottom <= 10
    assert bands[-1].source_bottom == 10


@pytest.mark.parametrize(
    "geometry,field",
    [
        (PageGeometry(210, 297, 0), "margin"),
        (PageGeometry(-210, 297, 20), "page_width"),
        (PageGeometry(210, 0, 20), "page_height"),
        (PageGeometry(210, 297, -1), "margin"),
        (PageGeometry(210, 297, 105), "margin"),
        (PageGeometry(300, 100, 50), "margin"),
        (PageGeometry(float("nan"), 297, 20), "page_width"),
    ],
)
def test_invalid_geometry_is_rejected(geometry, field):
    with pytest.raises(InvalidInputError) as exc:
        PaginatedExporter().export(make_snapshot(10, 10), geometry)
    assert exc.value.field == field
    assert field in str(exc.value)


@pytest.mark.parametrize(
    "width,height,field",
    [(0, 10, "snapshot.width"), (10, 0, "snapshot.height"), (-5, 10, "snapshot.width"), (10, 11, "snapshot.image")],
)
def test_invalid_snapshot_is_rejected(width, height, field):
    snap = Snapshot(image=Image.new("RGB", (10, 10)), width=width, height=height)
    with pytest.raises(InvalidInputError) as exc:
        PaginatedExporter().export(snap, A4)
    assert exc.value.field == field


def test_quality_must_be_in_range():
    with pytest.raises(InvalidInputError) as exc:
        PaginatedExporter(quality=0)
    assert exc.value.field == "quality"


def test_transparent_snapshot_is_flattened():
    img = Image.new("RGBA", (50, 80), (0, 0, 0, 0))
    doc = PaginatedExporter().export(Snapshot.from_image(img), A4)
    band = Image.open(io.BytesIO(doc.pages[0][0].data)).convert("RGB")
    assert band.getpixel((25, 40))[0] > 240


def test_saved_pdf_has_one_page_per_band(tmp_path):
    snap = make_snapshot(170, 771)
    out = tmp_path / "Worship_Service_Styles.pdf"
    doc = export_pdf(snap, out, mode=ScaleMode.FIT_WIDTH, title="Worship Service Styles")

    data = out.read_bytes()
    assert data.startswith(b"%PDF")
    assert pdf_page_count(data) == doc.page_count == 3
    assert b"Worship Service Styles" in data


def test_document_to_bytes_keeps_empty_first_page():
    doc = Document(210, 297)
    assert doc.page_count == 1
    assert pdf_page_count(doc.to_bytes()) == 1
