"""
Content Extraction Module.

Turns learner files into text the judgment service can read:
- PDF (.pdf)
- Word (.docx)
- Spreadsheets (.xlsx, .xls, .csv)
- Plain text, markup and source code
"""

from gradeflow.extractors.base import DocumentExtractor, ExtractionError
from gradeflow.extractors.factory import create_extractor, extract_document
from gradeflow.extractors.service import ContentExtractionService, FileLoader

__all__ = [
    "ContentExtractionService",
    "DocumentExtractor",
    "ExtractionError",
    "FileLoader",
    "create_extractor",
    "extract_document",
]
