"""
Export module for saved redaction versions.
Builds the JSON export payload, burns redactions into a PDF with PyMuPDF and
renders raster previews with the redaction boxes drawn on top.
"""

import fitz  # PyMuPDF
from PIL import Image, ImageDraw
from pathlib import Path
from typing import Iterable, Optional, Union
import json
import logging
import shutil

from errors import VersionNotFoundError
from models import (
    CanvasDimensions, CoordinateRect, ManualRedaction, PDFPageDimensions,
    RedactionVersion, utc_timestamp
)
from storage import cleanup_temp
from transformer import CoordinateTransformer, is_supported_rotation

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def build_export_payload(version: RedactionVersion, exported_at: Optional[str] = None) -> dict:
    """
    Serializable export record for one version.

    Contains the record, file and version ids, every redaction's coordinates
    and metadata, and a per-page count summary.
    """
    by_page: dict[str, int] = {}
    for r in version.redactions:
        by_page[str(r.page_number)] = by_page.get(str(r.page_number), 0) + 1

    return {
        "recordId": version.record_id,
        "fileName": version.file_name,
        "version": version.version_id,
        "timestamp": exported_at or utc_timestamp(),
        "redactions": [
            {
                "id": r.id,
                "pageNumber": r.page_number,
                "coordinates": r.rect.to_dict(),
                "reason": r.reason,
                "createdAt": r.created_at,
                "createdBy": r.created_by,
            }
            for r in version.redactions
        ],
        "summary": {
            "totalRedactions": len(version.redactions),
            "byPage": by_page,
        },
    }


def export_file_name(version: RedactionVersion) -> str:
    """redactions_<record>_<file>_<version>.json, with path separators replaced."""
    name = f"redactions_{version.record_id}_{version.file_name}_{version.version_id}.json"
    return name.replace("/", "_").replace("\\", "_")


async def export_version(
    service,
    record_id: str,
    file_name: str,
    version_id: str,
    output_dir: PathLike
) -> Path:
    """
    Write a version's export payload to output_dir and mark it exported.

    The version is only marked once the file is in place.

    Raises:
        VersionNotFoundError: the version does not exist
    """
    version = await service.get_version(record_id, file_name, version_id)
    if version is None:
        raise VersionNotFoundError(version_id, record_id, file_name)

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    output_path = output_dir / export_file_name(version)
    temp_path = output_path.with_suffix(".tmp")

    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(build_export_payload(version), f, indent=2)
        shutil.move(str(temp_path), str(output_path))
    except OSError:
        logger.exception(f"Export of version {version_id} failed")
        cleanup_temp(temp_path)
        raise

    await service.mark_version_exported(record_id, file_name, version_id)
    logger.info(f"Exported version {version_id} to {output_path}")
    return output_path


def page_dimensions(pdf_path: PathLike) -> list[PDFPageDimensions]:
    """
    Geometry of every page, in points.
    Uses the CropBox as the visible area; width/height are unrotated.
    """
    dims = []
    with fitz.open(str(pdf_path)) as doc:
        for page in doc:
            rotation = page.rotation
            if not is_supported_rotation(rotation):
                logger.warning(f"Page {page.number + 1} has rotation {rotation}, treating as 0")
                rotation = 0
            cropbox = page.cropbox
            dims.append(PDFPageDimensions(
                width=cropbox.width,
                height=cropbox.height,
                scale=1.0,
                rotation=rotation
            ))
    return dims


def _to_page_rect(page: "fitz.Page", rect: CoordinateRect) -> "fitz.Rect":
    """
    Map a bottom-left-origin rectangle onto PyMuPDF's unrotated page coordinates.
    The Y flip is pdf_to_canvas on a 1:1 unrotated canvas of the page size.
    Redaction annotations take unrotated coordinates whatever /Rotate says.
    """
    width, height = page.cropbox.width, page.cropbox.height
    flipped = CoordinateTransformer.pdf_to_canvas(
        rect,
        PDFPageDimensions(width=width, height=height),
        CanvasDimensions(width=width, height=height)
    )
    return fitz.Rect(flipped.x, flipped.y, flipped.x + flipped.width, flipped.y + flipped.height)


def apply_version_to_pdf(
    input_pdf: PathLike,
    output_pdf: PathLike,
    version: RedactionVersion,
    fill: tuple[float, float, float] = (0, 0, 0)
) -> int:
    """
    Burn a version's redactions into a copy of a PDF.

    Content under each box is removed, not just covered. Redactions pointing
    at pages the document does not have are skipped with a warning.
    Writes to a temporary file first and renames on success.

    Returns:
        Number of redactions applied
    """
    input_pdf = Path(input_pdf)
    output_pdf = Path(output_pdf)
    if input_pdf.resolve() == output_pdf.resolve():
        raise ValueError("Cannot overwrite the original PDF. Choose a different output path.")

    temp_path = output_pdf.with_suffix(".tmp.pdf")
    applied = 0

    try:
        with fitz.open(str(input_pdf)) as doc:
            touched = set()
            for r in version.redactions:
                if not 1 <= r.page_number <= len(doc):
                    logger.warning(
                        f"Redaction {r.id} targets page {r.page_number}, "
                        f"document has {len(doc)} pages; skipped"
                    )
                    continue
                page = doc[r.page_number - 1]
                page.add_redact_annot(_to_page_rect(page, r.rect), fill=fill)
                touched.add(r.page_number - 1)
                applied += 1

            for page_index in sorted(touched):
                doc[page_index].apply_redactions()

            doc.save(str(temp_path), garbage=4)

        if output_pdf.exists():
            output_pdf.unlink()
        shutil.move(str(temp_path), str(output_pdf))
    except Exception:
        logger.exception(f"Applying version {version.version_id} to {input_pdf} failed")
        cleanup_temp(temp_path)
        raise

    logger.info(f"Applied {applied} redactions from version {version.version_id} to {output_pdf}")
    return applied


def render_preview(
    pdf_path: PathLike,
    page_number: int,
    redactions: Iterable[ManualRedaction],
    dpi: float = 72,
    outline: tuple[int, int, int] = (255, 0, 0),
    filled: bool = False
) -> Image.Image:
    """
    Render one page (1-based) to an RGB image with redaction boxes drawn on it.

    The image shows the page as displayed, so boxes go through the same
    rotation and zoom as the page content.
    """
    with fitz.open(str(pdf_path)) as doc:
        page = doc[page_number - 1]
        zoom = fitz.Matrix(dpi / 72.0, dpi / 72.0)
        pix = page.get_pixmap(matrix=zoom, alpha=False)
        img = Image.frombytes("RGB", (pix.width, pix.height), pix.samples)
        to_pixels = page.rotation_matrix * zoom
        boxes = [
            _to_page_rect(page, r.rect) * to_pixels
            for r in redactions if r.page_number == page_number
        ]

    canvas_dims = CanvasDimensions(width=img.width, height=img.height)
    draw = ImageDraw.Draw(img)

    for rect in boxes:
        box = CoordinateTransformer.normalize_coordinates(
            CoordinateRect(rect.x0, rect.y0, rect.width, rect.height),
            canvas_dims
        )
        corners = [box.x, box.y, box.x + box.width - 1, box.y + box.height - 1]
        if filled:
            draw.rectangle(corners, fill=outline)
        else:
            draw.rectangle(corners, outline=outline, width=2)

    return img
