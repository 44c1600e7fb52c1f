"""
Low-level PDF utilities for filling the AcroForm contract templates.

pypdf reads the template's form fields and merges finished documents;
PyMuPDF renders each value with the embedded custom font and flattens the
form so the output can no longer be edited.
"""

from __future__ import annotations

import io
import logging
from typing import Dict, Iterable, List, Optional, Tuple

import fitz  # PyMuPDF
from pypdf import PdfReader, PdfWriter
from pypdf.errors import PdfReadError

logger = logging.getLogger(__name__)

FONT_SIZE = 12
MIN_FONT_SIZE = 6
CUSTOM_FONT_NAME = "contractfont"
FALLBACK_FONT_NAME = "helv"


class PDFFillError(RuntimeError):
    """Raised when a template or font cannot be used to produce a PDF."""


def list_template_fields(template_bytes: bytes) -> Dict[str, str]:
    """Return ``{field name: field type}`` for every form field in a template."""
    reader = _open_reader(template_bytes, "template")
    fields = reader.get_fields() or {}
    return {name: str(field.get("/FT", "")) for name, field in fields.items()}


def bind_fields(
    template_bytes: bytes,
    values: Dict[str, str],
    template_name: str = "template",
) -> Tuple[Dict[str, str], List[str]]:
    """
    Split ``values`` into fields that exist in the template and fields that do not.

    Missing fields are logged and skipped, never fatal.
    """
    available = list_template_fields(template_bytes)
    bound: Dict[str, str] = {}
    skipped: List[str] = []
    for pdf_field, value in values.items():
        if not value:
            continue
        if pdf_field not in available:
            logger.warning("Field '%s' not found in %s for value '%s'", pdf_field, template_name, value)
            skipped.append(pdf_field)
            continue
        bound[pdf_field] = value
    return bound, skipped


def fill_pdf_template(
    template_bytes: bytes,
    values: Dict[str, str],
    font_bytes: Optional[bytes] = None,
    template_name: str = "template",
    font_size: int = FONT_SIZE,
) -> bytes:
    """
    Fill a template, render the values with ``font_bytes`` and flatten the form.

    Args:
        template_bytes: The raw template PDF.
        values: Mapping of PDF field name -> text.
        font_bytes: TrueType font used to draw the values. ``None`` falls back
            to Helvetica, which lacks some Hungarian letters.
        template_name: Used for logging only.
        font_size: Preferred size; long values shrink down to ``MIN_FONT_SIZE``.

    Returns:
        Bytes of the flattened PDF.
    """
    if not template_bytes:
        raise PDFFillError(f"PDF template '{template_name}' is not loaded or is empty.")
    if font_bytes is not None and len(font_bytes) == 0:
        raise PDFFillError("Font is not loaded or is empty.")

    bound, skipped = bind_fields(template_bytes, values, template_name=template_name)

    try:
        doc = fitz.open(stream=template_bytes, filetype="pdf")
    except (RuntimeError, ValueError) as exc:
        raise PDFFillError(f"Cannot open template '{template_name}': {exc}") from exc

    try:
        for page in doc:
            widgets = list(page.widgets())
            if not widgets:
                continue

            fontname = FALLBACK_FONT_NAME
            if font_bytes:
                page.insert_font(fontname=CUSTOM_FONT_NAME, fontbuffer=font_bytes)
                fontname = CUSTOM_FONT_NAME

            for widget in widgets:
                if widget.field_type != fitz.PDF_WIDGET_TYPE_TEXT:
                    widget.field_flags |= fitz.PDF_FIELD_IS_READ_ONLY
                    widget.update()
                    continue
                value = bound.get(widget.field_name)
                if value:
                    _draw_value(page, widget.rect, value, fontname, font_size)
                page.delete_widget(widget)

        if font_bytes:
            # keep only the glyphs actually drawn
            doc.subset_fonts()
        result = doc.tobytes(garbage=3, deflate=True)
    finally:
        doc.close()

    _open_reader(result, template_name)
    logger.info(
        "Filled template %s (%d fields, %d skipped)", template_name, len(bound), len(skipped)
    )
    return result


def _draw_value(page, rect, text: str, fontname: str, font_size: int) -> int:
    """Draw ``text`` into ``rect``, shrinking the font until it fits."""
    box = fitz.Rect(rect.x0 + 1, rect.y0, rect.x1 - 1, rect.y1)
    size = font_size
    while size >= MIN_FONT_SIZE:
        rc = page.insert_textbox(box, text, fontsize=size, fontname=fontname, align=fitz.TEXT_ALIGN_LEFT)
        if rc >= 0:
            return size
        size -= 1
    # Too tall for a text box: write a single line on the field baseline.
    page.insert_text(
        fitz.Point(box.x0, box.y1 - 2), text, fontsize=MIN_FONT_SIZE, fontname=fontname
    )
    return MIN_FONT_SIZE


def merge_pdfs(documents: Iterable[bytes]) -> bytes:
    """Concatenate PDFs in order, keeping each document's page order."""
    writer = PdfWriter()
    count = 0
    for pdf_bytes in documents:
        writer.append(_open_reader(pdf_bytes, "merge input"))
        count += 1
    if count == 0:
        raise PDFFillError("Nothing to merge.")

    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def page_count(pdf_bytes: bytes) -> int:
    return len(_open_reader(pdf_bytes, "document").pages)


def _open_reader(pdf_bytes: bytes, label: str) -> PdfReader:
    if not pdf_bytes:
        raise PDFFillError(f"Empty PDF ({label}).")
    try:
        return PdfReader(io.BytesIO(pdf_bytes), strict=False)
    except PdfReadError as exc:
        raise PDFFillError(f"Malformed PDF ({label}): {exc}") from exc
