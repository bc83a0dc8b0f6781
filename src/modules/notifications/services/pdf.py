import base64
import binascii
import io
import logging
from datetime import datetime

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas

logger = logging.getLogger(__name__)

PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN_LEFT = 25 * mm
MARGIN_RIGHT = 25 * mm
MARGIN_TOP = 30 * mm
MARGIN_BOTTOM = 30 * mm
CONTENT_WIDTH = PAGE_WIDTH - MARGIN_LEFT - MARGIN_RIGHT
LINE_HEIGHT = 6 * mm
PARAGRAPH_SPACING = 5 * mm
SIGNATURE_BOX_HEIGHT = 18 * mm
SIGNATURE_LINE_LENGTH = 60 * mm


def _decode_image(img_url: str | None):
    """Return an ImageReader for a base64 data URL, or None if it cannot be read."""
    if not img_url or not img_url.startswith("data:image"):
        return None
    try:
        _, encoded = img_url.split(",", 1)
        return ImageReader(io.BytesIO(base64.b64decode(encoded)))
    except (ValueError, binascii.Error, OSError) as exc:
        logger.warning("Skipping unreadable signature image: %s", exc)
        return None


class _Writer:
    def __init__(self, pdf: canvas.Canvas):
        self.pdf = pdf
        self.y = PAGE_HEIGHT - MARGIN_TOP

    def ensure_space(self, required: float):
        if self.y - required < MARGIN_BOTTOM:
            self.pdf.showPage()
            self.y = PAGE_HEIGHT - MARGIN_TOP

    def paragraph(self, text: str, font: str = "Times-Roman", size: int = 11):
        lines = simpleSplit(text or "", font, size, CONTENT_WIDTH) or [""]
        self.pdf.setFont(font, size)
        for line in lines:
            self.ensure_space(LINE_HEIGHT)
            self.pdf.drawString(MARGIN_LEFT, self.y, line)
            self.y -= LINE_HEIGHT
        self.y -= PARAGRAPH_SPACING

    def signature(self, placeholder: dict, party_names: dict):
        self.ensure_space(SIGNATURE_BOX_HEIGHT + 3 * LINE_HEIGHT)
        image = _decode_image(placeholder.get("img_url"))
        if image is not None:
            self.pdf.drawImage(
                image, MARGIN_LEFT, self.y - SIGNATURE_BOX_HEIGHT,
                width=SIGNATURE_LINE_LENGTH, height=SIGNATURE_BOX_HEIGHT,
                preserveAspectRatio=True, mask="auto",
            )
        self.y -= SIGNATURE_BOX_HEIGHT
        self.pdf.line(MARGIN_LEFT, self.y, MARGIN_LEFT + SIGNATURE_LINE_LENGTH, self.y)
        self.y -= LINE_HEIGHT

        role = placeholder.get("party", "")
        name = placeholder.get("name") or party_names.get(role) or role
        self.pdf.setFont("Times-Roman", 10)
        self.pdf.drawString(MARGIN_LEFT, self.y, f"{name} ({role})" if name != role else role)
        self.y -= LINE_HEIGHT
        if placeholder.get("date"):
            self.pdf.drawString(MARGIN_LEFT, self.y, f"Date: {placeholder['date']}")
            self.y -= LINE_HEIGHT
        self.y -= PARAGRAPH_SPACING


def render_contract_pdf(contract_json: dict, contract_id: str) -> bytes:
    """Render the contract blocks and signature placeholders to an A4 PDF."""
    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4)
    title = contract_json.get("title") or "Contract Agreement"
    pdf.setTitle(title)
    writer = _Writer(pdf)

    pdf.setFont("Times-Bold", 18)
    pdf.drawCentredString(PAGE_WIDTH / 2, writer.y, title.upper())
    writer.y -= 2 * LINE_HEIGHT

    pdf.setFont("Times-Roman", 10)
    pdf.drawString(MARGIN_LEFT, writer.y, f"Contract ID: {contract_id}")
    writer.y -= LINE_HEIGHT
    pdf.drawString(MARGIN_LEFT, writer.y, f"Generated: {datetime.utcnow():%B %d, %Y}")
    writer.y -= 2 * LINE_HEIGHT

    party_names = {
        party.get("role"): party.get("name")
        for party in contract_json.get("parties") or []
        if isinstance(party, dict)
    }

    for block in contract_json.get("blocks") or []:
        writer.paragraph(block.get("text", ""))
        placeholders = sorted(block.get("signatures") or [], key=lambda s: s.get("index", 0))
        for placeholder in placeholders:
            writer.signature(placeholder, party_names)

    pdf.showPage()
    pdf.save()
    return buffer.getvalue()
