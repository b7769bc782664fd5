"""Pull plain text out of uploaded booking documents."""

from __future__ import annotations

import base64
import binascii
from io import BytesIO
from typing import Iterable

import openpyxl
import pdfplumber
import xlrd
from docx import Document as WordDocument
from PyPDF2 import PdfReader

from .models import Document

TEXT_EXTENSIONS = ("txt", "csv", "eml", "html", "htm", "md", "ics", "json")


class DocumentParseError(Exception):
    """A single document could not be turned into text."""


def _strip_data_url(data: str) -> str:
    if data.startswith("data:") and "," in data:
        return data.split(",", 1)[1]
    return data


def payload_size(data: str) -> int:
    """Decoded size in bytes of a base64 payload, without decoding it."""
    encoded = _strip_data_url(data or "").strip()
    return len(encoded) * 3 // 4 - encoded[-2:].count("=")


def decode_payload(data: str) -> bytes:
    """Decode a base64 payload, accepting ``data:<mime>;base64,`` prefixes."""
    if not data:
        raise DocumentParseError("empty payload")
    try:
        return base64.b64decode(_strip_data_url(data), validate=True)
    except (binascii.Error, ValueError) as e:
        raise DocumentParseError(f"invalid base64 data: {e}") from e


def _extension(filename: str) -> str:
    return filename.lower().rsplit(".", 1)[-1] if "." in filename else ""


def _pdf_to_text(file_data: bytes) -> str:
    text_parts = []
    try:
        with pdfplumber.open(BytesIO(file_data)) as pdf:
            for page in pdf.pages:
                page_text = page.extract_text()
                if page_text:
                    text_parts.append(page_text)
                for table in page.extract_tables():
                    for row in table:
                        if row:
                            text_parts.append(" | ".join(str(cell) for cell in row if cell))
    except Exception as e:
        print(f"[EXTRACT] pdfplumber failed: {e}")

    # If pdfplumber failed or got no text, try PyPDF2
    if not text_parts:
        reader = PdfReader(BytesIO(file_data))
        for page in reader.pages:
            page_text = page.extract_text()
            if page_text:
                text_parts.append(page_text)
    return "\n".join(text_parts)


def _word_to_text(file_data: bytes) -> str:
    doc = WordDocument(BytesIO(file_data))
    text_parts = [para.text for para in doc.paragraphs if para.text.strip()]
    for table in doc.tables:
        text_parts.append("--- Table ---")
        for row in table.rows:
            text_parts.append(" | ".join(cell.text.strip() for cell in row.cells))
    return "\n".join(text_parts)


def _excel_to_text(file_data: bytes) -> str:
    text_parts = []
    wb = openpyxl.load_workbook(BytesIO(file_data), data_only=True, read_only=True)
    try:
        for sheet_name in wb.sheetnames:
            text_parts.append(f"=== Sheet: {sheet_name} ===")
            for row in wb[sheet_name].iter_rows(values_only=True):
                cells = ["" if cell is None else str(cell) for cell in row]
                if any(cells):
                    text_parts.append(" | ".join(cells))
    finally:
        wb.close()
    return "\n".join(text_parts)


def _legacy_excel_to_text(file_data: bytes) -> str:
    text_parts = []
    wb = xlrd.open_workbook(file_contents=file_data)
    for sheet in wb.sheets():
        text_parts.append(f"=== Sheet: {sheet.name} ===")
        for row_idx in range(sheet.nrows):
            cells = [str(value) if value not in ("", None) else "" for value in sheet.row_values(row_idx)]
            if any(cells):
                text_parts.append(" | ".join(cells))
    return "\n".join(text_parts)


def _plain_text(file_data: bytes) -> str:
    try:
        return file_data.decode("utf-8")
    except UnicodeDecodeError:
        return file_data.decode("latin-1")


def extract_document_text(document: Document) -> str:
    """Return the text content of one document.

    Raises DocumentParseError for anything that keeps us from reading it:
    bad encoding, unsupported format, corrupt file or no text at all.
    """
    ext = _extension(document.filename)
    file_data = decode_payload(document.data)

    try:
        if ext == "pdf":
            text = _pdf_to_text(file_data)
        elif ext == "docx":
            text = _word_to_text(file_data)
        elif ext == "xlsx":
            text = _excel_to_text(file_data)
        elif ext == "xls":
            text = _legacy_excel_to_text(file_data)
        elif ext in TEXT_EXTENSIONS:
            text = _plain_text(file_data)
        elif ext == "doc":
            raise DocumentParseError("legacy .doc format is not supported, save as .docx")
        else:
            raise DocumentParseError(f"unsupported file type '.{ext}'" if ext else "missing file extension")
    except DocumentParseError:
        raise
    except Exception as e:
        raise DocumentParseError(str(e) or e.__class__.__name__) from e

    if not text.strip():
        raise DocumentParseError("no readable text found")
    return text


def failure_note(filename: str, reason: str) -> str:
    return f'[Document "{filename}" could not be parsed: {reason}]'


def extract_documents(documents: Iterable[Document]) -> tuple[str, list[str]]:
    """Extract text from every document, tolerating individual failures.

    Returns the combined text (one section per document, failures included
    as placeholder notes) and the list of failure notes.
    """
    sections = []
    notes = []
    for document in documents:
        try:
            text = extract_document_text(document)
        except DocumentParseError as e:
            note = failure_note(document.filename, str(e))
            print(f"[EXTRACT] {note}")
            sections.append(note)
            notes.append(note)
            continue
        sections.append(f"=== Document: {document.filename} ===\n{text}")
    return "\n\n".join(sections), notes
