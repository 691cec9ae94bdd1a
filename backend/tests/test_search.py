"""
Tests for the web_search tool: SearXNG result parsing, summaries and
error mapping (network calls go through httpx.MockTransport).
"""

import asyncio

import httpx

from config import runtime_config
from errors import ErrorCode
from routers.chat_executors import execute_tool
from routers.chat_executors import search
from routers.chat_executors.search import _build_summary, _parse_json_results, web_search

SEARX_PAYLOAD = {
    "results": [
        {"title": "<b>Rust</b> 1.80 released", "url": "https://blog.rust-lang.org/1.80", "content": "Today we &amp; you"},
        {"title": "Duplicate", "url": "https://blog.rust-lang.org/1.80/?utm=x", "content": "dup"},
        {"title": "No url", "url": "", "content": "skipped"},
        {"title": "Changelog", "url": "https://github.com/rust-lang/rust", "content": "x" * 500},
    ],
}


def _mock_searx(monkeypatch, handler):
    real_client = httpx.AsyncClient

    def factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(search.httpx, "AsyncClient", factory)


class TestParsing:
    def test_strips_html_and_deduplicates(self):
        results = _parse_json_results(SEARX_PAYLOAD, limit=10)

        assert [r["url"] for r in results] == ["https://blog.rust-lang.org/1.80", "https://github.com/rust-lang/rust"]
        assert results[0]["title"] == "Rust 1.80 released"
        assert results[0]["content"] == "Today we & you"
        assert len(results[1]["content"]) == search.CONTENT_PREVIEW_CHARS

    def test_limit(self):
        assert len(_parse_json_results(SEARX_PAYLOAD, limit=1)) == 1

    def test_summary_prefers_answers(self):
        data = {"answers": ["<i>42</i>"], "infoboxes": [{"content": "box"}]}
        assert _build_summary(data, []) == "42"

    def test_summary_falls_back_to_infobox_then_snippets(self):
        assert _build_summary({"infoboxes": [{"content": "Box text"}]}, []) == "Box text"
        results = [{"content": "one"}, {"content": ""}, {"content": "two"}]
        assert _build_summary({}, results) == "one two"


class TestWebSearch:
    def test_success(self, monkeypatch):
        runtime_config.update(web_search_enabled=True, searxng_url="http://searx.test")
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            return httpx.Response(200, json=SEARX_PAYLOAD)

        _mock_searx(monkeypatch, handler)
        result = asyncio.run(web_search("rust release"))

        assert result["success"] is True
        assert result["result_count"] == 2
        assert result["summary"].startswith("Today we & you")
        assert seen["url"].startswith("http://searx.test/search?q=rust+release")
        assert "format=json" in seen["url"]

    def test_empty_query(self):
        result = asyncio.run(web_search("   "))
        assert result["success"] is False
        assert result["error"]["code"] == ErrorCode.VALIDATION_MISSING_PARAM.value

    def test_disabled(self):
        result = asyncio.run(web_search("news"))
        assert result["success"] is False
        assert result["error"]["code"] == ErrorCode.EXTERNAL_SEARXNG_FAILED.value

    def test_upstream_status_error(self, monkeypatch):
        runtime_config.update(web_search_enabled=True)
        _mock_searx(monkeypatch, lambda request: httpx.Response(502, text="bad gateway"))

        result = asyncio.run(web_search("news"))

        assert result["success"] is False
        assert result["error"]["context"]["upstream_status"] == 502

    def test_connection_error(self, monkeypatch):
        runtime_config.update(web_search_enabled=True)

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        _mock_searx(monkeypatch, handler)
        result = asyncio.run(web_search("news"))

        assert result["error"]["message"] == "Search service unavailable"


class TestExecuteTool:
    def test_unknown_tool(self):
        result = asyncio.run(execute_tool("calculator", {"expression": "1+1"}))
        assert result["success"] is False
        assert result["error"]["tool"] == "calculator"

    def test_bad_arguments(self):
        result = asyncio.run(execute_tool("web_search", {"q": "typo"}))
        assert result["success"] is False
        assert "unexpected keyword argument" in result["error"]["message"]
