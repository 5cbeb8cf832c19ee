from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO

from PIL import Image, ImageOps
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from expense_tracker.core.logging import get_logger, log_event

logger = get_logger(__name__)

PDF_MIME_TYPE = "application/pdf"


@dataclass(frozen=True)
class PreparedImage:
    body: bytes
    mime_type: str


def normalize_image(body: bytes, *, max_dimension: int) -> PreparedImage | None:
    """Rotate per EXIF, flatten to RGB/greyscale, downscale and re-encode as PNG.

    Returns None when Pillow cannot read the bytes; callers then send the original upload.
    """
    try:
        image = Image.open(BytesIO(body))
        image = ImageOps.exif_transpose(image)
        if image.mode not in {"RGB", "L"}:
            image = image.convert("RGB")
        if max(image.size) > max_dimension:
            image.thumbnail((max_dimension, max_dimension))
        out = BytesIO()
        image.save(out, format="PNG", optimize=True)
    except (OSError, ValueError) as e:
        log_event(logger, "ocr.preprocess.skipped", reason=type(e).__name__, error=str(e))
        return None
    return PreparedImage(body=out.getvalue(), mime_type="image/png")


def pdf_text_layer(body: bytes) -> str:
    try:
        reader = PdfReader(BytesIO(body))
        pages = [(page.extract_text() or "") for page in reader.pages]
    except PdfReadError as e:
        log_event(logger, "ocr.pdf.unreadable", error=str(e))
        return ""
    text = "\n".join(pages).replace("\u202f", " ").replace("\xa0", " ")
    return text if text.strip() else ""


def largest_pdf_image(body: bytes) -> PreparedImage | None:
    """Scanned PDFs usually carry one big image per page; OCR the largest one."""
    try:
        reader = PdfReader(BytesIO(body))
        images = [image_file.image for page in reader.pages for image_file in page.images]
    except (PdfReadError, OSError, ValueError) as e:
        log_event(logger, "ocr.pdf.unreadable", error=str(e))
        return None

    images = [image for image in images if image is not None]
    if not images:
        return None
    best = max(images, key=lambda image: image.width * image.height)
    if best.mode not in {"RGB", "L"}:
        best = best.convert("RGB")
    out = BytesIO()
    best.save(out, format="PNG")
    return PreparedImage(body=out.getvalue(), mime_type="image/png")
