"""
Extractor factory module.

Selects the extractor for a filename and offers a one-step extraction helper.
"""

from gradeflow.extractors.base import DocumentExtractor, ExtractionError, file_extension
from gradeflow.extractors.docx_extractor import DocxExtractor
from gradeflow.extractors.excel_extractor import ExcelExtractor
from gradeflow.extractors.pdf_extractor import PDFExtractor
from gradeflow.extractors.text_extractor import TextExtractor
from gradeflow.models import ExtractedContent

# Registry of all available extractors
_EXTRACTORS: tuple[type[DocumentExtractor], ...] = (
    PDFExtractor,
    DocxExtractor,
    ExcelExtractor,
    TextExtractor,
)


def get_supported_extensions() -> tuple[str, ...]:
    """
    Get all supported file extensions across all extractors.

    Returns:
        Sorted tuple of extensions (e.g. ('.csv', '.docx', ...)).
    """
    extensions: list[str] = []
    for extractor_cls in _EXTRACTORS:
        extensions.extend(extractor_cls.SUPPORTED_EXTENSIONS)
    return tuple(sorted(set(extensions)))


def find_extractor(filename: str) -> DocumentExtractor | None:
    """Return an extractor for the filename, or None when unsupported."""
    extension = file_extension(filename)
    for extractor_cls in _EXTRACTORS:
        if extension in extractor_cls.SUPPORTED_EXTENSIONS:
            return extractor_cls()
    return None


def create_extractor(filename: str) -> DocumentExtractor:
    """
    Create the appropriate extractor for a given file.

    Raises:
        ExtractionError: If the file format is not supported.
    """
    extractor = find_extractor(filename)
    if extractor is None:
        raise ExtractionError(
            f"Unsupported file format '{file_extension(filename)}'. "
            f"Supported formats: {get_supported_extensions()}",
            filename,
        )
    return extractor


def extract_document(data: bytes, filename: str) -> ExtractedContent:
    """Extract text from file bytes in one step."""
    return create_extractor(filename).extract(data, filename)
