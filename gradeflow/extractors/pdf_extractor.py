"""
PDF extractor using PyMuPDF.
"""

from typing import ClassVar

import fitz  # PyMuPDF

from gradeflow.extractors.base import DocumentExtractor, ExtractionError
from gradeflow.models import ExtractedContent


class PDFExtractor(DocumentExtractor):
    """
    Extracts text content from PDF files.

    Pages are kept in reading order and labelled so the judge can cite them.
    """

    SUPPORTED_EXTENSIONS: ClassVar[tuple[str, ...]] = (".pdf",)
    MIME_TYPE: ClassVar[str] = "application/pdf"

    def extract(self, data: bytes, filename: str) -> ExtractedContent:
        self._validate_data(data, filename)

        try:
            text_parts: list[str] = []

            with fitz.open(stream=data, filetype="pdf") as doc:
                page_count = doc.page_count
                if page_count == 0:
                    raise ExtractionError("PDF has no pages", filename)

                for page_num, page in enumerate(doc, start=1):
                    page_text = page.get_text(
                        "text",
                        flags=fitz.TEXT_PRESERVE_WHITESPACE | fitz.TEXT_PRESERVE_LIGATURES,
                    )
                    if page_text.strip():
                        text_parts.append(f"--- Page {page_num} ---\n{page_text}")

            if not text_parts:
                raise ExtractionError(
                    "No text could be extracted. The PDF may be image-based (scanned).",
                    filename,
                )

            return self._create_result(
                "\n\n".join(text_parts), data, filename, page_count=page_count
            )

        except fitz.FileDataError as e:
            raise ExtractionError("PDF file is corrupted or invalid", filename, cause=e) from e
        except fitz.EmptyFileError as e:
            raise ExtractionError("PDF file is empty", filename, cause=e) from e
        except ExtractionError:
            raise
        except Exception as e:
            raise ExtractionError(f"Unexpected error: {e}", filename, cause=e) from e
