from __future__ import annotations

from dataclasses import dataclass
import hashlib

import fitz


@dataclass(frozen=True)
class PackageText:
    page_texts: tuple[str, ...]

    @property
    def total_pages(self) -> int:
        return len(self.page_texts)


@dataclass(frozen=True)
class SectionDocument:
    content: bytes
    sha256: str
    page_count: int


def _open_pdf(payload_bytes: bytes) -> fitz.Document:
    if not payload_bytes:
        raise ValueError("empty payload")
    try:
        document = fitz.open(stream=payload_bytes, filetype="pdf")
    except Exception as exc:
        raise ValueError("unreadable_pdf_payload") from exc
    # Recent PyMuPDF releases open arbitrary bytes as a non-PDF document.
    if not document.is_pdf:
        document.close()
        raise ValueError("unreadable_pdf_payload")
    return document


def extract_page_texts(payload_bytes: bytes) -> PackageText:
    document = _open_pdf(payload_bytes)
    try:
        page_texts = tuple(
            document.load_page(page_index).get_text("text") or ""
            for page_index in range(document.page_count)
        )
    finally:
        document.close()
    return PackageText(page_texts=page_texts)


def count_pages(payload_bytes: bytes) -> int:
    document = _open_pdf(payload_bytes)
    try:
        return document.page_count
    finally:
        document.close()


def split_pages(payload_bytes: bytes, *, page_start: int, page_end: int) -> SectionDocument:
    """Copy the 1-based inclusive page range into its own PDF."""
    source = _open_pdf(payload_bytes)
    try:
        if page_start < 1 or page_end < page_start or page_end > source.page_count:
            raise ValueError(
                f"page range {page_start}-{page_end} outside document of {source.page_count} pages"
            )
        target = fitz.open()
        try:
            target.insert_pdf(source, from_page=page_start - 1, to_page=page_end - 1)
            content = target.tobytes()
        finally:
            target.close()
    finally:
        source.close()

    return SectionDocument(
        content=content,
        sha256=hashlib.sha256(content).hexdigest(),
        page_count=page_end - page_start + 1,
    )


__all__ = [
    "PackageText",
    "SectionDocument",
    "count_pages",
    "extract_page_texts",
    "split_pages",
]
