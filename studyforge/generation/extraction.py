"""
Source text extraction.

A source is either inline text or a ``bucket/object/path`` reference to a
stored document. Stored PDFs are parsed with PyMuPDF; anything else is
decoded as UTF-8. All text goes through ``normalise_text`` before use.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import httpx
from loguru import logger

from config import get_settings
from studyforge.errors import DocumentDownloadError, EmptyCorpusError
from studyforge.jobs.types import CollectionSourcePayload

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f\u200b-\u200d\u2060\ufeff]")
_SPACE_RUNS = re.compile(r" {2,}")
_TRAILING_SPACES = re.compile(r" +\n")
_BLANK_LINES = re.compile(r"\n{3,}")


def normalise_text(value: str) -> str:
    """
    Clean extracted text.

    NBSP and tabs become spaces, line endings become LF, non-printing
    characters are removed, runs of spaces and of blank lines collapse.
    """
    text = value.replace("\u00a0", " ").replace("\r\n", "\n").replace("\r", "\n")
    text = text.replace("\t", " ")
    text = _CONTROL_CHARS.sub("", text)
    text = _SPACE_RUNS.sub(" ", text)
    text = _TRAILING_SPACES.sub("\n", text)
    text = _BLANK_LINES.sub("\n\n", text)
    return text.strip()


def split_storage_path(storage_path: str) -> tuple[str, str]:
    """Split ``bucket/object/path`` into (bucket, object path)."""
    bucket, _, object_path = storage_path.strip("/").partition("/")
    if not bucket or not object_path:
        raise DocumentDownloadError(f"Invalid storage path: '{storage_path}'")
    return bucket, object_path


# ========================================
# Storage
# ========================================


class DocumentStorage(Protocol):
    """Read access to stored documents."""

    def download(self, bucket: str, object_path: str) -> bytes: ...


class LocalDocumentStorage:
    """Buckets as directories under a root folder."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def download(self, bucket: str, object_path: str) -> bytes:
        path = (self.root / bucket / object_path).resolve()
        if self.root.resolve() not in path.parents:
            raise DocumentDownloadError(f"Object path escapes storage root: {bucket}/{object_path}")
        try:
            return path.read_bytes()
        except OSError as exc:
            raise DocumentDownloadError(f"Cannot read {bucket}/{object_path}: {exc}") from exc


class HttpDocumentStorage:
    """Object store reachable over HTTP (``{base_url}/{bucket}/{object}``)."""

    def __init__(self, base_url: str, timeout: float = 30.0, client: httpx.Client | None = None):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)

    def download(self, bucket: str, object_path: str) -> bytes:
        url = f"{self.base_url}/{bucket}/{object_path.lstrip('/')}"
        try:
            response = self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise DocumentDownloadError(
                f"Download of {bucket}/{object_path} failed: HTTP {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise DocumentDownloadError(f"Download of {bucket}/{object_path} failed: {exc}") from exc
        return response.content

    def close(self) -> None:
        self._client.close()


def storage_from_settings() -> DocumentStorage:
    """HTTP storage when a base URL is configured, local directories otherwise."""
    settings = get_settings()
    if settings.storage_base_url:
        return HttpDocumentStorage(settings.storage_base_url, timeout=settings.storage_timeout_seconds)
    return LocalDocumentStorage(settings.storage_root)


# ========================================
# Text extraction
# ========================================


@dataclass
class DocumentText:
    """Text pulled out of a stored document."""

    text: str
    page_count: int


def extract_document_text(data: bytes) -> DocumentText:
    """Extract text from PDF bytes, or decode plain text."""
    if not data.startswith(b"%PDF"):
        return DocumentText(text=data.decode("utf-8", errors="replace"), page_count=0)

    import fitz

    try:
        with fitz.open(stream=data, filetype="pdf") as doc:
            pages = [page.get_text() for page in doc]
    except (RuntimeError, ValueError) as exc:
        raise DocumentDownloadError(f"PDF extraction failed: {exc}") from exc
    return DocumentText(text="\n".join(pages), page_count=len(pages))


@dataclass
class ExtractedSource:
    """A source with its normalised text."""

    source: CollectionSourcePayload
    text: str

    @property
    def text_length(self) -> int:
        return len(self.text)

    @property
    def title(self) -> str:
        return self.source.title


def extract_source(source: CollectionSourcePayload, storage: DocumentStorage) -> ExtractedSource | None:
    """
    Extract one source.

    Returns:
        The extracted source, or None when the source has nothing to read
    """
    if source.raw_text:
        return ExtractedSource(source=source, text=normalise_text(source.raw_text))

    if not source.storage_path:
        return None

    bucket, object_path = split_storage_path(source.storage_path)
    document = extract_document_text(storage.download(bucket, object_path))
    text = normalise_text(document.text)
    logger.debug(
        "Extracted {} chars from {} ({} pages)",
        len(text),
        source.storage_path,
        document.page_count,
    )
    return ExtractedSource(source=source, text=text)


def extract_sources(
    sources: list[CollectionSourcePayload],
    storage: DocumentStorage,
) -> list[ExtractedSource]:
    """
    Extract every source, skipping the ones that fail or are empty.

    Raises:
        EmptyCorpusError: no source yielded any text
    """
    extracted: list[ExtractedSource] = []
    for source in sources:
        label = source.title or source.storage_path or source.document_id or "inline"
        try:
            entry = extract_source(source, storage)
        except Exception as exc:
            logger.warning("Skipping source '{}': {}", label, exc)
            continue
        if entry is None or entry.text_length == 0:
            logger.warning("Skipping source '{}': no text", label)
            continue
        extracted.append(entry)

    if not extracted:
        raise EmptyCorpusError("Could not extract any text from the selected sources")

    logger.info("Extracted {}/{} sources", len(extracted), len(sources))
    return extracted
