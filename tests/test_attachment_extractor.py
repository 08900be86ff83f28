import os
import sys
from io import BytesIO

import docx
import pandas as pd
from PIL import Image

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import services.attachment_extractor as attachment_extractor
from services.attachment_extractor import (
    Attachment,
    ContentExtractor,
    attachment_kind,
    combine_body_and_attachments,
)

XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def _docx_bytes(*paragraphs):
    document = docx.Document()
    for text in paragraphs:
        document.add_paragraph(text)
    buffer = BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def _xlsx_bytes(sheets):
    buffer = BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        for name, rows in sheets.items():
            pd.DataFrame(rows).to_excel(writer, sheet_name=name, index=False, header=False)
    return buffer.getvalue()


def _png_bytes():
    buffer = BytesIO()
    Image.new("RGB", (20, 20), "white").save(buffer, format="PNG")
    return buffer.getvalue()


def test_kind_prefers_content_type_over_extension():
    assert attachment_kind(Attachment("quote.bin", "application/pdf", b"x")) == "pdf"
    assert attachment_kind(Attachment("quote.xlsx", "application/octet-stream", b"x")) == "spreadsheet"
    assert attachment_kind(Attachment("scan.JPG", None, b"x")) == "image"
    assert attachment_kind(Attachment("notes.txt", "text/plain", b"x")) is None


def test_word_document_text():
    extractor = ContentExtractor()
    attachment = Attachment("quote.docx", DOCX, _docx_bytes("Desks: 5 x 1200", "Total: 6000"))

    text = extractor.extract(attachment)

    assert "Desks: 5 x 1200" in text
    assert "Total: 6000" in text


def test_spreadsheet_keeps_sheet_boundaries():
    extractor = ContentExtractor()
    content = _xlsx_bytes(
        {
            "Pricing": [["Item", "Qty", "Price"], ["Desk", 5, 1200]],
            "Terms": [["Payment", "Net 30"]],
        }
    )

    text = extractor.extract(Attachment("pricing.xlsx", XLSX, content))

    assert text.startswith("--- Sheet: Pricing ---")
    assert "Desk,5,1200" in text
    assert "--- Sheet: Terms ---" in text
    assert text.index("Pricing") < text.index("Terms")
    assert "Payment,Net 30" in text


def test_image_is_ocred(monkeypatch):
    calls = []

    def fake_ocr(image, lang=None):
        calls.append(lang)
        return "Grand Total: 500"

    monkeypatch.setattr(attachment_extractor.pytesseract, "image_to_string", fake_ocr)
    extractor = ContentExtractor(ocr_language="eng")

    text = extractor.extract(Attachment("scan.png", "image/png", _png_bytes()))

    assert text == "Grand Total: 500"
    assert calls == ["eng"]


def test_pdf_pages_are_joined(monkeypatch):
    class DummyPage:
        def __init__(self, text):
            self._text = text

        def extract_text(self):
            return self._text

    class DummyPdf:
        pages = [DummyPage("Page one"), DummyPage(None), DummyPage("Page two")]

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

    monkeypatch.setattr(attachment_extractor.pdfplumber, "open", lambda stream: DummyPdf())

    text = ContentExtractor().extract(Attachment("quote.pdf", "application/pdf", b"%PDF-1.4"))

    assert text == "Page one\nPage two"


def test_unsupported_or_empty_attachments_return_none():
    extractor = ContentExtractor()

    assert extractor.extract(Attachment("notes.txt", "text/plain", b"hello")) is None
    assert extractor.extract(Attachment("quote.pdf", "application/pdf", None)) is None
    assert extractor.extract(Attachment("quote.pdf", "application/pdf", b"")) is None


def test_corrupt_attachment_does_not_block_others():
    extractor = ContentExtractor()
    attachments = [
        Attachment("broken.xlsx", XLSX, b"definitely not a workbook"),
        Attachment("quote.docx", DOCX, _docx_bytes("Warranty: 2 years")),
    ]

    combined = extractor.combine(attachments)

    assert "broken.xlsx" not in combined
    assert combined.startswith("=== Content from quote.docx ===")
    assert "Warranty: 2 years" in combined


def test_combine_returns_none_when_nothing_extracted():
    assert ContentExtractor().combine([Attachment("a.txt", "text/plain", b"x")]) is None
    assert ContentExtractor().combine([]) is None


def test_attachment_text_is_appended_to_body():
    assert combine_body_and_attachments("Body", "=== Content from a ===\nA") == (
        "Body\n\n=== Content from a ===\nA"
    )
    assert combine_body_and_attachments("", "Attachment only") == "Attachment only"
    assert combine_body_and_attachments("  Body  ", None) == "Body"
    assert combine_body_and_attachments(None, None) == ""
