import pytest

from hirefit.core.exceptions import NotFoundError, ValidationError
from hirefit.services.ai.mock import MockAIProvider
from hirefit.services.document_parser import DocumentParser, get_extension, get_supported_types, validate_file
from hirefit.services.storage import LocalBlobStore, build_storage_path


def test_supported_types():
    assert "application/pdf" in get_supported_types()
    assert get_extension("application/vnd.openxmlformats-officedocument.wordprocessingml.document") == "docx"
    assert get_extension("image/png") is None


def test_validate_rejects_unsupported_type():
    with pytest.raises(ValidationError) as exc:
        validate_file("image/png", 100)
    assert exc.value.message.startswith("Unsupported file type: image/png")
    assert "application/pdf" in exc.value.details["supported_types"]


def test_validate_rejects_empty_and_oversize():
    with pytest.raises(ValidationError):
        validate_file("application/pdf", 0)
    with pytest.raises(ValidationError) as exc:
        validate_file("application/pdf", 2048, max_bytes=1024)
    assert "File too large" in exc.value.message


def test_parser_delegates_to_provider(sample_resume):
    result = DocumentParser(MockAIProvider()).parse_document(sample_resume, "jane.txt", "text/plain")
    assert "jane.doe@example.com" in result.text


def test_parser_validates_before_parsing():
    with pytest.raises(ValidationError):
        DocumentParser(MockAIProvider()).parse_document(b"GIF89a", "photo.gif", "image/gif")


def test_storage_path_is_tenant_scoped():
    path = build_storage_path(7, 12, "pdf")
    assert path.startswith("7/jobs/12/")
    assert path.endswith(".pdf")
    assert build_storage_path(7, 12, "pdf") != path


def test_blob_store_round_trip(tmp_path):
    store = LocalBlobStore(str(tmp_path))
    store.write("1/jobs/2/a.txt", b"hello")
    assert store.exists("1/jobs/2/a.txt")
    assert store.read("1/jobs/2/a.txt") == b"hello"


def test_blob_store_missing_file(tmp_path):
    with pytest.raises(NotFoundError):
        LocalBlobStore(str(tmp_path)).read("1/jobs/2/missing.pdf")


def test_blob_store_rejects_path_traversal(tmp_path):
    store = LocalBlobStore(str(tmp_path / "root"))
    with pytest.raises(ValidationError):
        store.write("../escape.txt", b"nope")
