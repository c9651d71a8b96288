"""Tests for source extraction, text normalisation and document storage."""

import httpx
import pytest

from studyforge.errors import DocumentDownloadError, EmptyCorpusError
from studyforge.generation.extraction import (
    HttpDocumentStorage,
    LocalDocumentStorage,
    extract_document_text,
    extract_sources,
    normalise_text,
    split_storage_path,
)
from studyforge.jobs.types import CollectionSourcePayload


class TestNormaliseText:
    def test_line_endings_and_tabs(self):
        assert normalise_text("a\r\nb\rc\td") == "a\nb\nc d"

    def test_non_breaking_space(self):
        assert normalise_text("a\u00a0b") == "a b"

    def test_control_and_zero_width_characters_removed(self):
        assert normalise_text("a\x00b\u200bc\ufeffd") == "abcd"

    def test_space_runs_and_blank_lines_collapse(self):
        assert normalise_text("  a    b   \n\n\n\n c  ") == "a b\n\n c"

    def test_strips(self):
        assert normalise_text("\n\n  text  \n") == "text"


class TestStoragePath:
    def test_split(self):
        assert split_storage_path("documents/user-1/notes.pdf") == ("documents", "user-1/notes.pdf")

    def test_leading_slash(self):
        assert split_storage_path("/documents/notes.pdf") == ("documents", "notes.pdf")

    @pytest.mark.parametrize("path", ["", "bucket", "bucket/"])
    def test_invalid(self, path):
        with pytest.raises(DocumentDownloadError):
            split_storage_path(path)


class TestExtractDocumentText:
    def test_plain_text(self):
        document = extract_document_text("Bonjour le monde".encode("utf-8"))

        assert document.text == "Bonjour le monde"
        assert document.page_count == 0

    def test_pdf(self):
        fitz = pytest.importorskip("fitz")
        doc = fitz.open()
        page = doc.new_page()
        page.insert_text((72, 72), "Mitochondria produce ATP")
        data = doc.tobytes()
        doc.close()

        document = extract_document_text(data)

        assert document.page_count == 1
        assert "Mitochondria produce ATP" in document.text


class TestExtractSources:
    def test_inline_and_stored_sources(self, fake_storage):
        fake_storage.files["documents/u1/cells.txt"] = b"Cells   are small."
        sources = [
            CollectionSourcePayload(title="Inline", raw_text="Inline\ttext"),
            CollectionSourcePayload(title="Stored", storage_path="documents/u1/cells.txt"),
        ]

        extracted = extract_sources(sources, fake_storage)

        assert [entry.text for entry in extracted] == ["Inline text", "Cells are small."]
        assert fake_storage.downloads == [("documents", "u1/cells.txt")]

    def test_failing_source_is_skipped(self, fake_storage):
        sources = [
            CollectionSourcePayload(title="Missing", storage_path="documents/missing.txt"),
            CollectionSourcePayload(title="Inline", raw_text="Some text"),
        ]

        extracted = extract_sources(sources, fake_storage)

        assert [entry.title for entry in extracted] == ["Inline"]

    def test_no_text_at_all(self, fake_storage):
        sources = [
            CollectionSourcePayload(title="Blank", raw_text="   \n "),
            CollectionSourcePayload(title="Nothing"),
        ]

        with pytest.raises(EmptyCorpusError):
            extract_sources(sources, fake_storage)


class TestLocalDocumentStorage:
    def test_download(self, tmp_path):
        (tmp_path / "documents" / "u1").mkdir(parents=True)
        (tmp_path / "documents" / "u1" / "a.txt").write_bytes(b"hello")

        assert LocalDocumentStorage(tmp_path).download("documents", "u1/a.txt") == b"hello"

    def test_missing_file(self, tmp_path):
        with pytest.raises(DocumentDownloadError):
            LocalDocumentStorage(tmp_path).download("documents", "nope.txt")

    def test_path_escape(self, tmp_path):
        with pytest.raises(DocumentDownloadError):
            LocalDocumentStorage(tmp_path / "root").download("documents", "../../etc/passwd")


class TestHttpDocumentStorage:
    def _storage(self, handler):
        client = httpx.Client(transport=httpx.MockTransport(handler))
        return HttpDocumentStorage("https://store.example.com/", client=client)

    def test_download(self):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, content=b"payload")

        storage = self._storage(handler)

        assert storage.download("documents", "/u1/a.pdf") == b"payload"
        assert seen == ["https://store.example.com/documents/u1/a.pdf"]

    def test_http_error_keeps_status(self):
        storage = self._storage(lambda request: httpx.Response(503))

        with pytest.raises(DocumentDownloadError) as exc_info:
            storage.download("documents", "a.pdf")

        assert exc_info.value.status_code == 503

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(DocumentDownloadError):
            self._storage(handler).download("documents", "a.pdf")
