"""
Base classes for file content extraction.

Extractors work on raw bytes because learner files come from object
storage or GitHub, not from the local filesystem.
"""

from abc import ABC, abstractmethod
from pathlib import PurePosixPath
from typing import ClassVar

from gradeflow.models import ExtractedContent


class ExtractionError(Exception):
    """
    Raised when file extraction fails.

    Contains detailed information about the failure cause.
    """

    def __init__(self, message: str, file_path: str, cause: Exception | None = None):
        self.file_path = str(file_path)
        self.cause = cause
        self.reason = message
        super().__init__(f"Failed to extract '{file_path}': {message}")


def file_extension(filename: str) -> str:
    """Lower-cased suffix of a filename, including the dot."""
    return PurePosixPath(filename).suffix.lower()


class DocumentExtractor(ABC):
    """
    Abstract base class for content extractors.

    All extractors implement `extract` and declare which file
    extensions they support via `SUPPORTED_EXTENSIONS`.
    """

    SUPPORTED_EXTENSIONS: ClassVar[tuple[str, ...]] = ()
    MIME_TYPE: ClassVar[str] = "application/octet-stream"

    @classmethod
    def supports(cls, filename: str) -> bool:
        return file_extension(filename) in cls.SUPPORTED_EXTENSIONS

    @abstractmethod
    def extract(self, data: bytes, filename: str) -> ExtractedContent:
        """
        Extract text content from file bytes.

        Args:
            data: Raw file content.
            filename: Original filename, used for format detection.

        Returns:
            ExtractedContent with the text and metadata.

        Raises:
            ExtractionError: If extraction fails for any reason.
        """
        ...

    def _validate_data(self, data: bytes, filename: str) -> None:
        if not data:
            raise ExtractionError("File is empty", filename)

        if not self.supports(filename):
            raise ExtractionError(
                f"Unsupported file format. Expected one of: {self.SUPPORTED_EXTENSIONS}",
                filename,
            )

    def _create_result(
        self, content: str, data: bytes, filename: str, **metadata: object
    ) -> ExtractedContent:
        summary = content[:200] + ("..." if len(content) > 200 else "")
        return ExtractedContent(
            filename=filename,
            content=content,
            extracted_text_summary=summary,
            metadata={
                "size": len(data),
                "mime_type": self.MIME_TYPE,
                "extraction_status": "success",
                **metadata,
            },
        )
