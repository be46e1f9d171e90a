"""Tests for JSON export, PDF burn-in and previews. PDFs are generated with PyMuPDF."""

import asyncio
import json

import fitz  # PyMuPDF
import pytest

from errors import VersionNotFoundError
from exporter import (
    apply_version_to_pdf, build_export_payload, export_version, page_dimensions, render_preview
)
from models import CoordinateRect, VersionStatus

RECORD_ID = "record_123"
FILE_NAME = "letter.pdf"


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def sample_pdf(tmp_path):
    """
    Two A4 pages with a secret line and a public line each.
    The second page has the same layout and is then turned 90 degrees.
    """
    path = tmp_path / "input.pdf"
    doc = fitz.open()
    page = doc.new_page(width=595, height=842)
    page.insert_text((72, 100), "SECRET", fontsize=12)
    page.insert_text((72, 400), "PUBLIC", fontsize=12)
    rotated = doc.new_page(width=595, height=842)
    rotated.insert_text((72, 100), "HIDDEN", fontsize=12)
    rotated.insert_text((72, 400), "VISIBLE", fontsize=12)
    rotated.set_rotation(90)
    doc.save(str(path))
    doc.close()
    return path


@pytest.fixture
def saved_version(service):
    # Bottom-left origin: covers y 80..110 from the top of an 842pt page
    run(service.add_redaction(RECORD_ID, FILE_NAME, 1, CoordinateRect(60, 732, 200, 30), "PII"))
    run(service.add_redaction(RECORD_ID, FILE_NAME, 2, CoordinateRect(60, 732, 200, 30)))
    return run(service.save_version(RECORD_ID, FILE_NAME, "for export"))


def test_build_export_payload(saved_version):
    payload = build_export_payload(saved_version, exported_at="2026-01-01T00:00:00.000Z")

    assert payload["recordId"] == RECORD_ID
    assert payload["fileName"] == FILE_NAME
    assert payload["version"] == saved_version.version_id
    assert payload["timestamp"] == "2026-01-01T00:00:00.000Z"
    assert payload["summary"] == {"totalRedactions": 2, "byPage": {"1": 1, "2": 1}}

    first = payload["redactions"][0]
    assert first["pageNumber"] == 1
    assert first["coordinates"] == {"x": 60, "y": 732, "width": 200, "height": 30}
    assert first["reason"] == "PII"
    assert first["createdBy"] == "staff_user_001"


def test_export_version_writes_file_and_marks_exported(service, saved_version, tmp_path):
    path = run(export_version(service, RECORD_ID, FILE_NAME, saved_version.version_id, tmp_path / "out"))

    assert path.name == f"redactions_{RECORD_ID}_{FILE_NAME}_{saved_version.version_id}.json"
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["version"] == saved_version.version_id
    assert len(payload["redactions"]) == 2

    stored = run(service.get_version(RECORD_ID, FILE_NAME, saved_version.version_id))
    assert stored.status == VersionStatus.EXPORTED


def test_export_missing_version(service, tmp_path):
    with pytest.raises(VersionNotFoundError, match="missing"):
        run(export_version(service, RECORD_ID, FILE_NAME, "missing", tmp_path))
    assert list(tmp_path.iterdir()) == []


def test_page_dimensions(sample_pdf):
    dims = page_dimensions(sample_pdf)

    assert len(dims) == 2
    assert (dims[0].width, dims[0].height, dims[0].rotation) == pytest.approx((595, 842, 0))
    assert dims[1].rotation == 90
    assert dims[1].is_sideways


def test_apply_version_removes_covered_text(sample_pdf, saved_version, tmp_path):
    output = tmp_path / "redacted.pdf"

    applied = apply_version_to_pdf(sample_pdf, output, saved_version)

    assert applied == 2
    with fitz.open(str(output)) as doc:
        text = doc[0].get_text()
    assert "SECRET" not in text
    assert "PUBLIC" in text
    assert not output.with_suffix(".tmp.pdf").exists()


def test_apply_version_on_rotated_page_hits_unrotated_area(sample_pdf, saved_version, tmp_path):
    output = tmp_path / "redacted.pdf"

    apply_version_to_pdf(sample_pdf, output, saved_version)

    with fitz.open(str(output)) as doc:
        assert doc[1].rotation == 90
        text = doc[1].get_text()
    assert "HIDDEN" not in text
    assert "VISIBLE" in text


def test_apply_version_skips_missing_pages(sample_pdf, service, tmp_path):
    run(service.add_redaction(RECORD_ID, FILE_NAME, 7, CoordinateRect(0, 0, 10, 10)))
    version = run(service.save_version(RECORD_ID, FILE_NAME))

    assert apply_version_to_pdf(sample_pdf, tmp_path / "out.pdf", version) == 0
    assert (tmp_path / "out.pdf").exists()


def test_apply_version_refuses_to_overwrite_input(sample_pdf, saved_version):
    with pytest.raises(ValueError):
        apply_version_to_pdf(sample_pdf, sample_pdf, saved_version)


def test_render_preview_paints_box_in_canvas_space(tmp_path, service):
    path = tmp_path / "blank.pdf"
    doc = fitz.open()
    doc.new_page(width=200, height=100)
    doc.save(str(path))
    doc.close()

    redaction = run(service.add_redaction(RECORD_ID, FILE_NAME, 1, CoordinateRect(20, 10, 50, 30)))

    img = render_preview(path, 1, [redaction], dpi=72, filled=True)

    assert img.size == (200, 100)
    # Y flip: top edge at 100 - 10 - 30 = 60
    assert img.getpixel((30, 70)) == (255, 0, 0)
    assert img.getpixel((30, 50)) == (255, 255, 255)
    assert img.getpixel((5, 5)) == (255, 255, 255)


def test_render_preview_follows_page_rotation(tmp_path, service):
    path = tmp_path / "rotated.pdf"
    doc = fitz.open()
    page = doc.new_page(width=595, height=842)
    page.set_rotation(90)
    doc.save(str(path))
    doc.close()

    redaction = run(service.add_redaction(RECORD_ID, FILE_NAME, 1, CoordinateRect(100, 200, 150, 50)))

    img = render_preview(path, 1, [redaction], dpi=72, filled=True)

    # Displayed page is 842 x 595; the box lands at x 200..250, y 100..250
    assert img.size == (842, 595)
    assert img.getpixel((225, 175)) == (255, 0, 0)
    assert img.getpixel((205, 105)) == (255, 0, 0)
    assert img.getpixel((300, 300)) == (255, 255, 255)
    assert img.getpixel((225, 300)) == (255, 255, 255)


def test_render_preview_scales_with_dpi(tmp_path, service):
    path = tmp_path / "blank.pdf"
    doc = fitz.open()
    doc.new_page(width=200, height=100)
    doc.save(str(path))
    doc.close()

    redaction = run(service.add_redaction(RECORD_ID, FILE_NAME, 1, CoordinateRect(20, 10, 50, 30)))

    img = render_preview(path, 1, [redaction], dpi=144, filled=True)

    assert img.size == (400, 200)
    assert img.getpixel((60, 140)) == (255, 0, 0)
    assert img.getpixel((60, 110)) == (255, 255, 255)
