import logging
from typing import Dict, List, Optional

from hirefit.core.config import settings
from hirefit.core.exceptions import ValidationError
from hirefit.schemas.ai import DocumentParseResult
from hirefit.services.ai.base import AIProvider

logger = logging.getLogger(__name__)

# Supported MIME types -> storage extension
SUPPORTED_TYPES: Dict[str, str] = {
    "application/pdf": "pdf",
    "application/msword": "doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "text/plain": "txt",
}


def get_supported_types() -> List[str]:
    return list(SUPPORTED_TYPES.keys())


def get_extension(mime_type: str) -> Optional[str]:
    return SUPPORTED_TYPES.get(mime_type)


def validate_file(mime_type: str, size: int, max_bytes: Optional[int] = None) -> None:
    """Raises ValidationError for unsupported types, empty files and oversize files."""
    if mime_type not in SUPPORTED_TYPES:
        raise ValidationError(
            f"Unsupported file type: {mime_type}. Supported types: {', '.join(get_supported_types())}",
            details={"supported_types": get_supported_types()},
        )

    max_bytes = settings.storage.max_upload_bytes if max_bytes is None else max_bytes
    if size == 0:
        raise ValidationError("File is empty")
    if size > max_bytes:
        raise ValidationError(f"File too large: {size} bytes. Maximum size: {max_bytes} bytes")


class DocumentParser:
    """Validates documents and delegates text extraction to the configured AI provider."""

    def __init__(self, provider: AIProvider):
        self.provider = provider

    def parse_document(self, content: bytes, file_name: str, mime_type: str) -> DocumentParseResult:
        validate_file(mime_type, len(content))

        logger.debug(f"Parsing document: {file_name} ({mime_type}, {len(content)} bytes)")
        try:
            result = self.provider.parse_document(content, file_name, mime_type)
        except Exception as e:
            logger.error(f"Failed to parse document {file_name}: {e}")
            raise

        logger.info(
            f"Document parsed: {file_name}, {result.page_count} pages, "
            f"{len(result.text)} chars, confidence: {result.confidence * 100:.1f}%"
        )
        return result
