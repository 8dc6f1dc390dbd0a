"""Text extraction for downloaded documents."""

import io
import logging
import re
from typing import Optional

from bs4 import BeautifulSoup
from pypdf import PdfReader
from pypdf.errors import PdfReadError
from trafilatura import extract

logger = logging.getLogger(__name__)

WHITESPACE_RE = re.compile(r"\s+")
HTML_SNIFF_RE = re.compile(rb"<\s*(!doctype\s+html|html|head|body)[\s>]", re.IGNORECASE)

# Below this many characters the trafilatura result is treated as a miss
MIN_MAIN_CONTENT_CHARS = 40

PDF = "pdf"
HTML = "html"
TEXT = "text"
BINARY = "binary"


def collapse_whitespace(text: str) -> str:
    return WHITESPACE_RE.sub(" ", text or "").strip()


def classify_content(content_type: Optional[str], url: str, body: bytes) -> str:
    """Classify a download as ``pdf``, ``html``, ``text`` or ``binary``."""
    ctype = (content_type or "").lower()
    if "pdf" in ctype or url.lower().split("?")[0].endswith(".pdf") or body[:5] == b"%PDF-":
        return PDF
    if "html" in ctype or "xml" in ctype:
        return HTML
    if HTML_SNIFF_RE.search(body[:2048]):
        return HTML
    if ctype.startswith("text/"):
        return TEXT
    if not ctype and body and b"\x00" not in body[:1024]:
        return TEXT
    return BINARY


def html_to_text(html: str) -> str:
    """Main-content text of an HTML page.

    trafilatura finds the article body; pages it cannot handle fall back to
    the full visible text with scripts and styles removed.
    """
    text = extract(html, include_comments=False, include_tables=True)
    if text and len(text.strip()) >= MIN_MAIN_CONTENT_CHARS:
        return collapse_whitespace(text)

    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    return collapse_whitespace(soup.get_text(" "))


def pdf_to_text(data: bytes) -> str:
    """Extract text from PDF ``data`` using pypdf; unreadable files give ''."""
    try:
        reader = PdfReader(io.BytesIO(data))
    except (PdfReadError, ValueError, OSError) as e:
        logger.warning(f"PDF parse failed: {e}")
        return ""

    chunks = []
    for idx, page in enumerate(reader.pages):
        try:
            extracted = page.extract_text() or ""
        except (PdfReadError, ValueError, KeyError) as e:
            logger.warning(f"PDF page {idx} extraction failed: {e}")
            extracted = ""
        if extracted:
            chunks.append(extracted)

    return collapse_whitespace(" ".join(chunks))


def extract_text(kind: str, body: bytes) -> str:
    """Extract plain text for a classified body."""
    if kind == PDF:
        return pdf_to_text(body)
    if kind == HTML:
        return html_to_text(body.decode("utf-8", errors="replace"))
    if kind == TEXT:
        return collapse_whitespace(body.decode("utf-8", errors="replace"))
    return ""
