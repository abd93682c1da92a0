"""PDF watermarking with pypdf.

Stamps a FreeText annotation on every page; the delivery gate runs this in a
worker thread.
"""
from io import BytesIO

from pypdf import PdfReader, PdfWriter
from pypdf.annotations import FreeText
from pypdf.errors import PdfReadError
from pypdf.generic import NameObject, NumberObject

from core.logging_config import get_logger

logger = get_logger(__name__)


def watermark_pdf(data: bytes, text: str) -> bytes:
    """Return a copy of ``data`` with ``text`` stamped near each page's bottom edge.

    Unreadable PDFs are returned unchanged.
    """
    try:
        reader = PdfReader(BytesIO(data))
    except PdfReadError as e:
        logger.warning("watermark_skipped", reason=str(e))
        return data

    writer = PdfWriter()
    writer.append(reader)
    for index, page in enumerate(writer.pages):
        width = float(page.mediabox.width)
        annotation = FreeText(
            text=text,
            rect=(20, 10, max(width - 20, 40), 28),
            font="Helvetica",
            font_size="8pt",
            font_color="808080",
            border_color=None,
            background_color=None,
        )
        annotation[NameObject("/F")] = NumberObject(4)  # print flag
        writer.add_annotation(page_number=index, annotation=annotation)

    out = BytesIO()
    writer.write(out)
    return out.getvalue()
