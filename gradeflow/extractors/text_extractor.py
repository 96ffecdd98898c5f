"""
Plain text and source code extractor.

Decodes with an encoding fallback and tags source files with their
programming language.
"""

from typing import ClassVar

from gradeflow.extractors.base import DocumentExtractor, ExtractionError, file_extension
from gradeflow.models import ExtractedContent

CODE_LANGUAGES: dict[str, str] = {
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".java": "java",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".cs": "csharp",
    ".go": "go",
    ".rs": "rust",
    ".rb": "ruby",
    ".php": "php",
    ".swift": "swift",
    ".kt": "kotlin",
    ".scala": "scala",
    ".sql": "sql",
    ".sh": "bash",
    ".r": "r",
    ".m": "matlab",
    ".html": "html",
    ".css": "css",
    ".scss": "scss",
    ".ipynb": "json",
}

PLAIN_EXTENSIONS: tuple[str, ...] = (
    ".txt",
    ".md",
    ".rst",
    ".json",
    ".yaml",
    ".yml",
    ".xml",
    ".toml",
    ".ini",
    ".cfg",
    ".log",
)


class TextExtractor(DocumentExtractor):
    """
    Extracts text from plain text and code files.

    Tries UTF-8 first, then falls back through common single-byte encodings.
    """

    SUPPORTED_EXTENSIONS: ClassVar[tuple[str, ...]] = PLAIN_EXTENSIONS + tuple(CODE_LANGUAGES)
    MIME_TYPE: ClassVar[str] = "text/plain"

    ENCODINGS: ClassVar[tuple[str, ...]] = ("utf-8", "utf-8-sig", "latin-1", "cp1252")

    def extract(self, data: bytes, filename: str) -> ExtractedContent:
        self._validate_data(data, filename)

        content = self._decode_with_fallback(data, filename)
        if not content.strip():
            raise ExtractionError("File is empty or contains only whitespace", filename)

        language = CODE_LANGUAGES.get(file_extension(filename))
        return self._create_result(
            content, data, filename, is_code=language is not None, language=language
        )

    def _decode_with_fallback(self, data: bytes, filename: str) -> str:
        last_error: Exception | None = None

        for encoding in self.ENCODINGS:
            try:
                return data.decode(encoding)
            except UnicodeDecodeError as e:
                last_error = e
                continue

        raise ExtractionError(
            f"Could not decode file with any supported encoding: {self.ENCODINGS}",
            filename,
            cause=last_error,
        )
