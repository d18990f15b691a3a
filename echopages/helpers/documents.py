import base64
import logging
import re
from pathlib import PurePath

import ebooklib
from bs4 import BeautifulSoup
from ebooklib import epub
from mistralai import Mistral
from echopages.config import MISTRAL_API_KEY
from echopages.models import Document

logger = logging.getLogger(__name__)

client = Mistral(api_key=MISTRAL_API_KEY or "")


# OCR markdown: ![img-0.jpeg](img-0.jpeg)
IMAGE_LINK = re.compile(r"!\[[^\]]*\]\([^)]*\)")
HEADING = re.compile(r"^#{1,6}\s+(.*?)[\s#]*$")
EMPHASIS = re.compile(r"^(\*{1,3}|_{1,3})([^*_]+)\1$")


def clean_ocr_markdown(markdown: str) -> str:
    """Reduce OCR page markdown to the plain lines the chapter scanner expects."""
    lines = []
    for line in IMAGE_LINK.sub("", markdown).split("\n"):
        stripped = line.strip()
        heading = HEADING.match(stripped)
        if heading:
            stripped = heading.group(1)
        emphasis = EMPHASIS.match(stripped)
        if emphasis:
            stripped = emphasis.group(2).strip()
        lines.append(stripped if heading or emphasis else line.rstrip())
    return "\n".join(lines).strip()


class DocumentExtractionError(Exception):
    """Raised when an uploaded file cannot be turned into text."""


def to_data_url(content: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(content).decode('ascii')}"


async def extract_pdf(file: bytes) -> Document:
    ocr_response = await client.ocr.process_async(
        model="mistral-ocr-latest",
        document={
            "type": "document_url",
            "document_url": to_data_url(file, "application/pdf"),
        },
    )

    page_texts = [clean_ocr_markdown(page.markdown) for page in ocr_response.pages]
    empty_pages = [i + 1 for i, text in enumerate(page_texts) if not text]
    if empty_pages:
        logger.warning("Empty PDF pages detected: %s", empty_pages[:10])

    text = "\n\n".join(page_texts)
    logger.info("PDF extracted: %d pages, %d characters", len(page_texts), len(text))
    return Document(text=text, page_texts=page_texts)


def _html_to_text(html: bytes) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    blocks = []
    for element in soup.find_all(["h1", "h2", "h3", "h4", "p", "div", "li"]):
        if element.find(["p", "div", "li"]):
            continue
        text = " ".join(element.get_text(" ").split())
        if text:
            blocks.append(text)
    if not blocks:
        blocks = [line.strip() for line in soup.get_text("\n").splitlines() if line.strip()]
    return "\n\n".join(blocks)


def extract_epub(path: str) -> Document:
    book = epub.read_epub(path)
    page_texts = []
    for item_id, _ in book.spine:
        item = book.get_item_with_id(item_id)
        if item is None or item.get_type() != ebooklib.ITEM_DOCUMENT:
            continue
        text = _html_to_text(item.get_content())
        if text:
            page_texts.append(text)

    text = "\n\n".join(page_texts)
    logger.info("EPUB extracted: %d spine documents, %d characters", len(page_texts), len(text))
    return Document(text=text, page_texts=page_texts)


async def extract_document(file: bytes, filename: str, epub_path: str | None = None) -> Document:
    """
    Turn an uploaded book into plain text.

    1. PDFs go through Mistral OCR, one markdown page per PDF page.
    2. EPUBs are read from `epub_path` (ebooklib needs a file on disk) in spine order.
    3. Plain text is decoded as UTF-8.
    """
    suffix = PurePath(filename).suffix.lower()

    if suffix == ".pdf":
        document = await extract_pdf(file)
    elif suffix == ".epub":
        if epub_path is None:
            raise DocumentExtractionError("EPUB extraction needs the file on disk")
        try:
            document = extract_epub(epub_path)
        except (epub.EpubException, KeyError) as e:
            raise DocumentExtractionError(f"Invalid EPUB: {e}") from e
    elif suffix in (".txt", ".md"):
        text = file.decode("utf-8", errors="replace")
        document = Document(text=text, page_texts=[text])
    else:
        raise DocumentExtractionError(f"Unsupported file type: {filename}")

    if not document.text.strip():
        raise DocumentExtractionError(f"No text could be extracted from {filename}")
    return document
