"""
Content extraction service.

Loads learner files from object storage or GitHub and turns them into
`ExtractedContent`. Extraction never fails the whole batch: a file that
cannot be read becomes an `[ERROR: ...]` placeholder and an unsupported
binary becomes a partial placeholder, so the judge still sees every file.
"""

import logging
import re
from pathlib import Path

import httpx

from gradeflow.config import Settings, get_settings
from gradeflow.extractors.base import ExtractionError, file_extension
from gradeflow.extractors.factory import find_extractor, get_supported_extensions
from gradeflow.models import ExtractedContent, FileReference

logger = logging.getLogger(__name__)

GITHUB_BLOB_PATTERN = re.compile(r"^https://github\.com/([^/]+)/([^/]+)/blob/(.+)$")


def github_raw_url(url: str) -> str:
    """Map a github.com blob URL to its raw.githubusercontent.com form."""
    match = GITHUB_BLOB_PATTERN.match(url)
    if not match:
        return url
    owner, repo, path = match.groups()
    return f"https://raw.githubusercontent.com/{owner}/{repo}/{path}"


class FileLoader:
    """
    Fetches file bytes for a `FileReference`.

    Stored files resolve to `<storage_root>/<bucket>/<key>`, or to
    `<storage_base_url>/<bucket>/<key>` when an HTTP endpoint is configured.
    """

    def __init__(self, settings: Settings | None = None, client: httpx.AsyncClient | None = None):
        self._settings = settings or get_settings()
        self._client = client

    async def load(self, ref: FileReference) -> bytes:
        name = ref.filename or ref.key or "unnamed"

        if ref.content:
            return ref.content.encode("utf-8")

        if ref.github_url:
            return await self._fetch(github_raw_url(ref.github_url), name)

        if ref.key and ref.bucket:
            if self._settings.file_storage_base_url:
                url = f"{self._settings.file_storage_base_url}/{ref.bucket}/{ref.key}"
                return await self._fetch(url, name)
            return self._read_local(ref.bucket, ref.key, name)

        raise ExtractionError("File reference has no storage location", name)

    def _read_local(self, bucket: str, key: str, name: str) -> bytes:
        root = Path(self._settings.file_storage_root).resolve()
        path = (root / bucket / key).resolve()
        if root not in path.parents:
            raise ExtractionError("Storage key escapes the storage root", name)
        try:
            return path.read_bytes()
        except OSError as e:
            raise ExtractionError(f"Could not read stored file: {e}", name, cause=e) from e

    async def _fetch(self, url: str, name: str) -> bytes:
        try:
            if self._client is not None:
                response = await self._client.get(url)
            else:
                async with httpx.AsyncClient(
                    timeout=self._settings.url_fetch_timeout_seconds, follow_redirects=True
                ) as client:
                    response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ExtractionError(f"Download failed: {e}", name, cause=e) from e
        return response.content


class ContentExtractionService:
    """Extracts the text of every file a learner handed in."""

    def __init__(self, settings: Settings | None = None, loader: FileLoader | None = None):
        self._settings = settings or get_settings()
        self._loader = loader or FileLoader(self._settings)

    async def extract_content_from_files(self, refs: list[FileReference]) -> list[ExtractedContent]:
        results = []
        for ref in refs:
            results.append(await self._extract_one(ref))
        return results

    async def _extract_one(self, ref: FileReference) -> ExtractedContent:
        filename = ref.filename or ref.key or "unnamed"

        extractor = find_extractor(filename)
        if extractor is None:
            return self._partial(filename, ref)

        try:
            data = await self._loader.load(ref)
            limit = int(self._settings.max_file_size_mb * 1024 * 1024)
            if len(data) > limit:
                raise ExtractionError(
                    f"File exceeds {self._settings.max_file_size_mb}MB limit", filename
                )
            content = extractor.extract(data, filename)
        except ExtractionError as e:
            logger.warning(
                "Extraction failed for %s: %s",
                filename,
                e.reason,
                extra={"context": {"bucket": ref.bucket, "key": ref.key}},
            )
            return ExtractedContent(
                filename=filename,
                content=f"[ERROR: Could not extract {filename}: {e.reason}]",
                metadata={
                    "size": ref.size or 0,
                    "mime_type": ref.mime_type,
                    "extraction_status": "failed",
                    "error": e.reason,
                },
            )

        if ref.mime_type:
            content.metadata["mime_type"] = ref.mime_type
        return content

    def _partial(self, filename: str, ref: FileReference) -> ExtractedContent:
        extension = file_extension(filename) or "unknown"
        logger.info("No extractor for %s, sending placeholder", filename)
        return ExtractedContent(
            filename=filename,
            content=(
                f"[Binary file {filename} ({extension}): extraction requires a "
                f"supported format, one of {', '.join(get_supported_extensions())}]"
            ),
            metadata={
                "size": ref.size or 0,
                "mime_type": ref.mime_type,
                "extraction_status": "partial",
            },
        )
