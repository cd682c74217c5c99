import io
import json
import re
from typing import Any, Callable, Dict

import chardet
from docx import Document as DocxDocument
from pdfminer.high_level import extract_pages
from pdfminer.layout import LTTextContainer

from ..errors import ContentExtractionError, UnsupportedMimeTypeError
from ..utils.logger import get_logger

logger = get_logger(__name__)

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
OCTET_STREAM = "application/octet-stream"

MIME_TYPES: Dict[str, str] = {
    "txt": "text/plain",
    "md": "text/markdown",
    "markdown": "text/markdown",
    "html": "text/html",
    "htm": "text/html",
    "json": "application/json",
    "js": "text/plain",
    "ts": "text/plain",
    "css": "text/plain",
    "xml": "text/xml",
    "pdf": "application/pdf",
    "docx": DOCX_MIME,
}

_HTML_ENTITIES = {
    "&amp;": "&",
    "&lt;": "<",
    "&gt;": ">",
    "&quot;": '"',
    "&#39;": "'",
    "&nbsp;": " ",
}

_FENCED_CODE = re.compile(r"```.*?```", re.DOTALL)
_INLINE_CODE = re.compile(r"`[^`]+`")
_IMAGE = re.compile(r"!\[([^\]]*)\]\([^)]+\)")
_LINK = re.compile(r"\[([^\]]+)\]\([^)]+\)")
_HEADING = re.compile(r"^#+\s+", re.MULTILINE)
_BOLD = re.compile(r"(\*\*|__)(.*?)\1")
_ITALIC = re.compile(r"(\*|_)(.*?)\1")
_RULE = re.compile(r"^(-{3,}|\*{3,}|_{3,})$", re.MULTILINE)

_SCRIPT = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_STYLE = re.compile(r"<style\b[^<]*(?:(?!</style>)<[^<]*)*</style>", re.IGNORECASE)
_COMMENT = re.compile(r"<!--.*?-->", re.DOTALL)
_TAG = re.compile(r"<[^>]+>")
_ENTITY = re.compile(r"&[^;]+;")
_WHITESPACE = re.compile(r"\s+")
_EXTRA_NEWLINES = re.compile(r"\n{3,}")


def detect_mime_type(filename: str) -> str:
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    return MIME_TYPES.get(ext, OCTET_STREAM)


def decode_bytes(content: bytes) -> str:
    try:
        return content.decode("utf-8")
    except UnicodeDecodeError:
        enc = chardet.detect(content).get("encoding") or "utf-8"
        try:
            return content.decode(enc, errors="ignore")
        except LookupError:
            return content.decode("utf-8", errors="ignore")


def extract_plain(text: str) -> str:
    return text.strip()


def extract_markdown(text: str) -> str:
    text = _FENCED_CODE.sub("", text)
    text = _INLINE_CODE.sub("", text)
    text = _IMAGE.sub(r"\1", text)
    text = _LINK.sub(r"\1", text)
    text = _HEADING.sub("", text)
    text = _BOLD.sub(r"\2", text)
    text = _ITALIC.sub(r"\2", text)
    text = _RULE.sub("", text)
    return text.strip()


def extract_html(text: str) -> str:
    text = _SCRIPT.sub("", text)
    text = _STYLE.sub("", text)
    text = _COMMENT.sub("", text)
    text = _TAG.sub(" ", text)
    text = _ENTITY.sub(lambda m: _HTML_ENTITIES.get(m.group(0), m.group(0)), text)
    text = _WHITESPACE.sub(" ", text)
    return text.strip()


def _flatten_json(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, list):
        return " ".join(_flatten_json(v) for v in value)
    if isinstance(value, dict):
        parts = []
        for key, inner in value.items():
            rendered = _flatten_json(inner)
            if rendered:
                parts.append(f"{key}: {rendered}")
        return " ".join(parts)
    return str(value)


def extract_json(text: str) -> str:
    try:
        data = json.loads(text)
    except ValueError:
        return text
    return _flatten_json(data)


def extract_pdf(content: bytes) -> str:
    try:
        pages = []
        for page in extract_pages(io.BytesIO(content)):
            pages.append("".join(el.get_text() for el in page if isinstance(el, LTTextContainer)))
    except Exception as e:
        raise ContentExtractionError(f"Failed to extract PDF content: {e}") from e

    text = "\n".join(pages)
    if not text.strip():
        raise ContentExtractionError("Failed to extract PDF content: no text content could be extracted")

    text = text.replace("\r\n", "\n")
    text = _EXTRA_NEWLINES.sub("\n\n", text)
    logger.debug("Extracted %d chars from %d PDF pages", len(text), len(pages))
    return text.strip()


def extract_docx(content: bytes) -> str:
    try:
        doc = DocxDocument(io.BytesIO(content))
    except Exception as e:
        raise ContentExtractionError(f"Failed to extract DOCX content: {e}") from e
    return "\n".join(p.text for p in doc.paragraphs).strip()


_BINARY_EXTRACTORS: Dict[str, Callable[[bytes], str]] = {
    "application/pdf": extract_pdf,
    DOCX_MIME: extract_docx,
}

_TEXT_EXTRACTORS: Dict[str, Callable[[str], str]] = {
    "text/plain": extract_plain,
    "text/markdown": extract_markdown,
    "text/x-markdown": extract_markdown,
    "text/html": extract_html,
    "application/json": extract_json,
}


def extract_text(content: bytes, mime_type: str) -> str:
    """Normalise a document to plain text according to its MIME type."""
    mime = (mime_type or "").split(";", 1)[0].strip().lower()

    if mime in _BINARY_EXTRACTORS:
        return _BINARY_EXTRACTORS[mime](content)

    extractor = _TEXT_EXTRACTORS.get(mime)
    if extractor is None:
        if not mime.startswith("text/"):
            raise UnsupportedMimeTypeError(mime_type)
        extractor = extract_plain
    return extractor(decode_bytes(content))
