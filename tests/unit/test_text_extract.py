"""
Unit tests for local text extraction (Step 1).
"""
from __future__ import annotations

import io

import docx
import fitz  # PyMuPDF

from apps.worker.steps.step01_text_extract import extract_text_from_attachment, parse_pdf_locally


def _pdf(*texts: str) -> bytes:
    doc = fitz.open()
    for text in texts:
        page = doc.new_page()
        page.insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data


def _docx() -> bytes:
    document = docx.Document()
    document.add_paragraph("Diagnosis: lumbar strain")
    document.add_paragraph("Plan:   physiotherapy twice weekly")
    table = document.add_table(rows=1, cols=2)
    table.rows[0].cells[0].text = "Disability"
    table.rows[0].cells[1].text = "20%"
    buf = io.BytesIO()
    document.save(buf)
    return buf.getvalue()


def test_parse_pdf_locally_reads_all_pages():
    parsed = parse_pdf_locally(_pdf("Discharge summary", "Follow-up visit"))
    assert parsed.page_count == 2
    assert "Discharge summary" in parsed.text
    assert "Follow-up visit" in parsed.text


def test_parse_pdf_locally_corrupt_input():
    parsed = parse_pdf_locally(b"not a pdf at all")
    assert parsed.text == ""
    assert parsed.page_count == 1


def test_attachment_pdf_whitespace_collapsed():
    text = extract_text_from_attachment(_pdf("Discharge summary", "Follow-up visit"), "records.PDF")
    assert text == "Discharge summary Follow-up visit"


def test_attachment_docx_paragraphs_and_tables():
    text = extract_text_from_attachment(_docx(), "opinion.docx")
    assert text == "Diagnosis: lumbar strain Plan: physiotherapy twice weekly Disability 20%"


def test_attachment_detected_by_mime_type():
    mime = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
    assert "lumbar strain" in extract_text_from_attachment(_docx(), "upload.bin", mime)


def test_unsupported_attachment_is_empty():
    assert extract_text_from_attachment(b"legacy", "old.doc") == ""
    assert extract_text_from_attachment(b"corrupt", "broken.docx") == ""
