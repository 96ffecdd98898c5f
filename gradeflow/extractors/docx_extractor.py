"""
Word document extractor using python-docx.

Only the .docx format is read; legacy .doc files are reported as
unsupported by the extraction service.
"""

from io import BytesIO
from typing import ClassVar

from docx import Document
from docx.opc.exceptions import PackageNotFoundError
from docx.table import Table

from gradeflow.extractors.base import DocumentExtractor, ExtractionError
from gradeflow.models import ExtractedContent


class DocxExtractor(DocumentExtractor):
    """Extracts paragraphs and tables from Word documents."""

    SUPPORTED_EXTENSIONS: ClassVar[tuple[str, ...]] = (".docx",)
    MIME_TYPE: ClassVar[str] = (
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
    )

    def extract(self, data: bytes, filename: str) -> ExtractedContent:
        self._validate_data(data, filename)

        try:
            doc = Document(BytesIO(data))
            text_parts = [para.text for para in doc.paragraphs if para.text.strip()]

            for table in doc.tables:
                table_text = self._extract_table(table)
                if table_text:
                    text_parts.append(table_text)

            if not text_parts:
                raise ExtractionError("Document contains no extractable text", filename)

            return self._create_result(
                "\n\n".join(text_parts), data, filename, table_count=len(doc.tables)
            )

        except PackageNotFoundError as e:
            raise ExtractionError(
                "File is not a valid .docx document or is corrupted", filename, cause=e
            ) from e
        except ExtractionError:
            raise
        except Exception as e:
            raise ExtractionError(f"Unexpected error: {e}", filename, cause=e) from e

    def _extract_table(self, table: Table) -> str:
        rows: list[str] = []
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells]
            if any(cells):
                rows.append(" | ".join(cells))
        return "TABLE:\n" + "\n".join(rows) if rows else ""
