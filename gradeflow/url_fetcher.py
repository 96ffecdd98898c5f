"""
URL content fetching for URL-based answers.

GitHub links get special handling: blob links are read as raw files, and
repository links fall back from the README on `main` to the README on
`master`, then to repository metadata from the GitHub API, and finally
to the scraped repository page. Any other URL is reduced to its visible
body text.
"""

import logging
import re
from dataclasses import dataclass

import httpx
from bs4 import BeautifulSoup

from gradeflow.config import Settings, get_settings
from gradeflow.extractors.service import GITHUB_BLOB_PATTERN, github_raw_url

logger = logging.getLogger(__name__)

GITHUB_REPO_PATTERN = re.compile(r"^https://github\.com/([^/]+)/([^/]+)/?$")

NON_CONTENT_TAGS = ["script", "style", "noscript", "iframe", "noembed", "embed", "object"]


@dataclass
class FetchResult:
    body: str
    is_functional: bool

    @classmethod
    def failed(cls) -> "FetchResult":
        return cls(body="", is_functional=False)


def collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


class UrlContentFetcher:
    """Retrieves readable content behind a learner-submitted URL."""

    def __init__(self, settings: Settings | None = None, client: httpx.AsyncClient | None = None):
        self._settings = settings or get_settings()
        self._client = client

    async def fetch(self, url: str) -> FetchResult:
        """
        Fetch the content behind a URL.

        Never raises: any failure returns a non-functional result.
        """
        try:
            if self._client is not None:
                result = await self._fetch_with(self._client, url)
            else:
                async with httpx.AsyncClient(
                    timeout=self._settings.url_fetch_timeout_seconds,
                    follow_redirects=True,
                    headers={"User-Agent": "gradeflow"},
                ) as client:
                    result = await self._fetch_with(client, url)
        except httpx.HTTPError as e:
            logger.warning("Fetching %s failed: %s", url, e)
            return FetchResult.failed()

        if result.is_functional:
            result.body = result.body[: self._settings.max_url_content_chars]
        return result

    async def _fetch_with(self, client: httpx.AsyncClient, url: str) -> FetchResult:
        if "github.com" not in url:
            html = await self._get_text(client, url)
            if html is None:
                return FetchResult.failed()
            return FetchResult(body=self._body_text(html), is_functional=True)

        if GITHUB_BLOB_PATTERN.match(url):
            raw = await self._get_text(client, github_raw_url(url))
            return FetchResult(raw, True) if raw is not None else FetchResult.failed()

        repo_match = GITHUB_REPO_PATTERN.match(url)
        if repo_match:
            owner, repo = repo_match.groups()
            content = await self._fetch_repository(client, owner, repo)
            if content is not None:
                return FetchResult(body=content, is_functional=True)

        html = await self._get_text(client, url)
        if html is None:
            return FetchResult.failed()
        content = self._github_page_text(html)
        return FetchResult(body=content, is_functional=True) if content else FetchResult.failed()

    async def _fetch_repository(self, client: httpx.AsyncClient, owner: str, repo: str) -> str | None:
        for branch in ("main", "master"):
            readme = await self._get_text(
                client, f"https://raw.githubusercontent.com/{owner}/{repo}/{branch}/README.md"
            )
            if readme is not None:
                return readme

        response = await client.get(f"https://api.github.com/repos/{owner}/{repo}")
        if response.status_code != 200:
            return None
        try:
            info = response.json()
        except ValueError:
            logger.debug("Repository metadata for %s/%s is not JSON", owner, repo)
            return None
        if not isinstance(info, dict):
            return None
        return (
            f"Repository: {info.get('full_name')}\n"
            f"Description: {info.get('description') or 'No description'}\n"
            f"Stars: {info.get('stargazers_count')}\n"
            f"Forks: {info.get('forks_count')}\n"
            f"Language: {info.get('language') or 'Not specified'}\n"
            f"Last Updated: {info.get('updated_at')}"
        )

    @staticmethod
    async def _get_text(client: httpx.AsyncClient, url: str) -> str | None:
        response = await client.get(url)
        if response.status_code != 200:
            logger.debug("GET %s returned %s", url, response.status_code)
            return None
        return response.text

    @staticmethod
    def _soup(html: str) -> BeautifulSoup:
        soup = BeautifulSoup(html, "html.parser")
        for tag in soup(NON_CONTENT_TAGS):
            tag.decompose()
        return soup

    def _body_text(self, html: str) -> str:
        soup = self._soup(html)
        root = soup.body or soup
        return collapse_whitespace(root.get_text(" "))

    def _github_page_text(self, html: str) -> str:
        soup = self._soup(html)

        readme = soup.select_one("article.markdown-body")
        if readme is not None:
            return collapse_whitespace(readme.get_text(" "))

        parts: list[str] = []
        about = soup.select_one(".Box-body")
        if about is not None:
            parts.append(about.get_text(" ").strip())

        files = [
            item.get_text().strip()
            for item in soup.select("tr.js-navigation-item .js-navigation-open")
            if item.get_text().strip()
        ]
        if files:
            parts.append("Repository Files:\n" + "\n".join(f"- {name}" for name in files))

        return collapse_whitespace("\n\n".join(parts))
