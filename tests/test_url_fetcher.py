"""
Unit tests for URL content fetching.

HTTP is served by `httpx.MockTransport` so no network access is needed.
"""

from typing import Callable

import httpx
import pytest

from gradeflow.config import Settings
from gradeflow.url_fetcher import FetchResult, UrlContentFetcher, collapse_whitespace

Handler = Callable[[httpx.Request], httpx.Response]


async def fetch(settings: Settings, handler: Handler, url: str) -> FetchResult:
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        return await UrlContentFetcher(settings, client).fetch(url)


def routes(table: dict[str, httpx.Response], requested: list[str] | None = None) -> Handler:
    """Serve fixed responses by URL; anything else is a 404."""

    def handler(request: httpx.Request) -> httpx.Response:
        if requested is not None:
            requested.append(str(request.url))
        return table.get(str(request.url), httpx.Response(404))

    return handler


class TestPlainPages:
    """Tests for non-GitHub URLs."""

    @pytest.mark.asyncio
    async def test_body_text_extracted(self, test_settings: Settings) -> None:
        """Test scripts and styles are stripped and whitespace collapsed."""
        html = (
            "<html><head><title>T</title><style>p {}</style></head>"
            "<body><h1>Water   cycle</h1>\n<script>track()</script><p>Evaporation first.</p></body></html>"
        )
        handler = routes({"https://site.local/essay": httpx.Response(200, text=html)})

        result = await fetch(test_settings, handler, "https://site.local/essay")

        assert result == FetchResult(body="Water cycle Evaporation first.", is_functional=True)

    @pytest.mark.asyncio
    async def test_error_status_not_functional(self, test_settings: Settings) -> None:
        """Test non-200 responses mark the URL as not functional."""
        result = await fetch(test_settings, routes({}), "https://site.local/missing")

        assert result == FetchResult.failed()

    @pytest.mark.asyncio
    async def test_transport_error_not_functional(self, test_settings: Settings) -> None:
        """Test connection failures never raise."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        result = await fetch(test_settings, handler, "https://site.local/")

        assert result.is_functional is False

    @pytest.mark.asyncio
    async def test_body_truncated(self, test_settings: Settings) -> None:
        """Test content is capped at the configured length."""
        settings = test_settings.model_copy(update={"max_url_content_chars": 10})
        handler = routes({"https://site.local/": httpx.Response(200, text="<p>" + "a" * 50 + "</p>")})

        result = await fetch(settings, handler, "https://site.local/")

        assert result.body == "a" * 10


class TestGitHub:
    """Tests for GitHub links."""

    @pytest.mark.asyncio
    async def test_readme_falls_back_to_master(self, test_settings: Settings) -> None:
        """Test the README on master is used when main has none."""
        requested: list[str] = []
        handler = routes(
            {
                "https://raw.githubusercontent.com/ada/notes/master/README.md": httpx.Response(
                    200, text="# Notes"
                )
            },
            requested,
        )

        result = await fetch(test_settings, handler, "https://github.com/ada/notes")

        assert result == FetchResult(body="# Notes", is_functional=True)
        assert requested == [
            "https://raw.githubusercontent.com/ada/notes/main/README.md",
            "https://raw.githubusercontent.com/ada/notes/master/README.md",
        ]

    @pytest.mark.asyncio
    async def test_repository_metadata_from_api(self, test_settings: Settings) -> None:
        """Test repository metadata is used when no README exists."""
        handler = routes(
            {
                "https://api.github.com/repos/ada/notes": httpx.Response(
                    200,
                    json={
                        "full_name": "ada/notes",
                        "description": None,
                        "stargazers_count": 3,
                        "forks_count": 1,
                        "language": "Python",
                        "updated_at": "2026-01-01T00:00:00Z",
                    },
                )
            }
        )

        result = await fetch(test_settings, handler, "https://github.com/ada/notes")

        assert result.is_functional is True
        assert "Repository: ada/notes" in result.body
        assert "Description: No description" in result.body
        assert "Language: Python" in result.body

    @pytest.mark.asyncio
    async def test_non_json_metadata_not_functional(self, test_settings: Settings) -> None:
        """Test an HTML reply from the repository API never raises."""
        handler = routes(
            {"https://api.github.com/repos/ada/notes": httpx.Response(200, text="<html>not json</html>")}
        )

        result = await fetch(test_settings, handler, "https://github.com/ada/notes")

        assert result == FetchResult.failed()

    @pytest.mark.asyncio
    async def test_non_json_metadata_falls_back_to_page(self, test_settings: Settings) -> None:
        """Test the repository page is scraped when the API reply is not JSON."""
        html = '<html><body><article class="markdown-body"><p>Lab report</p></article></body></html>'
        handler = routes(
            {
                "https://api.github.com/repos/ada/notes": httpx.Response(200, text="<html>not json</html>"),
                "https://github.com/ada/notes": httpx.Response(200, text=html),
            }
        )

        result = await fetch(test_settings, handler, "https://github.com/ada/notes")

        assert result == FetchResult(body="Lab report", is_functional=True)

    @pytest.mark.asyncio
    async def test_scraped_page_when_everything_else_fails(self, test_settings: Settings) -> None:
        """Test the rendered README article is scraped last."""
        html = '<html><body><nav>menu</nav><article class="markdown-body"><p>Lab  report</p></article></body></html>'
        handler = routes({"https://github.com/ada/notes": httpx.Response(200, text=html)})

        result = await fetch(test_settings, handler, "https://github.com/ada/notes")

        assert result == FetchResult(body="Lab report", is_functional=True)

    @pytest.mark.asyncio
    async def test_unreachable_repository(self, test_settings: Settings) -> None:
        """Test a repository with nothing reachable is not functional."""
        result = await fetch(test_settings, routes({}), "https://github.com/ada/private")

        assert result.is_functional is False

    @pytest.mark.asyncio
    async def test_blob_link_read_raw(self, test_settings: Settings) -> None:
        """Test file links are read from the raw host."""
        handler = routes(
            {
                "https://raw.githubusercontent.com/ada/notes/main/src/app.py": httpx.Response(
                    200, text="print('hi')"
                )
            }
        )

        result = await fetch(test_settings, handler, "https://github.com/ada/notes/blob/main/src/app.py")

        assert result.body == "print('hi')"


def test_collapse_whitespace() -> None:
    """Test runs of whitespace become single spaces."""
    assert collapse_whitespace("  a \n\t b  ") == "a b"
