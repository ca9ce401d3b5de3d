from __future__ import annotations

import base64
import json

import httpx
import pytest

from statement_converter.modules.extraction.ai import (
    ExtractorNotConfiguredError,
    GatewayExtractor,
    UpstreamError,
    UpstreamQuotaExhaustedError,
    UpstreamRateLimitedError,
    parse_transactions,
    strip_code_fences,
)


def _completion(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def _extractor(handler, *, api_key: str | None = "sk-test") -> GatewayExtractor:
    return GatewayExtractor(
        api_key=api_key,
        base_url="https://gateway.example.com/v1/",
        model="test-model",
        timeout_seconds=5.0,
        transport=httpx.MockTransport(handler),
    )


def test_extract_posts_pdf_as_data_url_and_parses_rows():
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["payload"] = json.loads(request.content)
        rows = [{"date": "2024-01-15", "description": "GROCERY", "debit": 45.5, "credit": None}]
        return httpx.Response(200, json=_completion(json.dumps(rows)))

    rows = _extractor(handler).extract(b"%PDF-1.4 fake")

    assert rows == [{"date": "2024-01-15", "description": "GROCERY", "debit": 45.5, "credit": None}]
    assert seen["url"] == "https://gateway.example.com/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    payload = seen["payload"]
    assert payload["model"] == "test-model"
    assert payload["messages"][0]["role"] == "system"
    image = payload["messages"][1]["content"][1]["image_url"]["url"]
    assert image == "data:application/pdf;base64," + base64.b64encode(b"%PDF-1.4 fake").decode()


def test_extract_strips_markdown_fences():
    def handler(_: httpx.Request) -> httpx.Response:
        content = '```json\n[{"date":"2024-03-01","description":"Rent","debit":900}]\n```'
        return httpx.Response(200, json=_completion(content))

    rows = _extractor(handler).extract(b"%PDF")
    assert rows == [{"date": "2024-03-01", "description": "Rent", "debit": 900}]


@pytest.mark.parametrize(
    "content",
    ['{"transactions": []}', "I could not read this document.", "", "```\nnull\n```"],
)
def test_extract_non_array_content_yields_empty_list(content):
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_completion(content))

    assert _extractor(handler).extract(b"%PDF") == []


def test_extract_missing_choices_yields_empty_list():
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": []})

    assert _extractor(handler).extract(b"%PDF") == []


@pytest.mark.parametrize(
    ("status_code", "error_type"),
    [
        (429, UpstreamRateLimitedError),
        (402, UpstreamQuotaExhaustedError),
        (500, UpstreamError),
        (400, UpstreamError),
    ],
)
def test_extract_classifies_upstream_failures(status_code, error_type):
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, text="nope")

    with pytest.raises(error_type) as exc_info:
        _extractor(handler).extract(b"%PDF")
    assert exc_info.value.status_code == status_code


def test_extract_rate_limit_is_not_confused_with_quota():
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(429)

    with pytest.raises(UpstreamError) as exc_info:
        _extractor(handler).extract(b"%PDF")
    assert not isinstance(exc_info.value, UpstreamQuotaExhaustedError)


def test_extract_wraps_transport_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(UpstreamError) as exc_info:
        _extractor(handler).extract(b"%PDF")
    assert exc_info.value.status_code is None


def test_extract_wraps_timeouts():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(UpstreamError, match="timed out"):
        _extractor(handler).extract(b"%PDF")


def test_extract_rejects_malformed_gateway_body():
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>gateway</html>")

    with pytest.raises(UpstreamError, match="malformed"):
        _extractor(handler).extract(b"%PDF")


def test_extract_without_api_key_is_not_configured():
    def handler(_: httpx.Request) -> httpx.Response:  # pragma: no cover
        raise AssertionError("gateway must not be called")

    with pytest.raises(ExtractorNotConfiguredError):
        _extractor(handler, api_key=None).extract(b"%PDF")


def test_parse_transactions_drops_non_object_entries():
    assert parse_transactions('[{"date": "2024-01-01"}, 3, "x", null]') == [{"date": "2024-01-01"}]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("```json\n[]\n```", "[]"),
        ("```JSON [1]```", "[1]"),
        ("```\n[2]\n```", "[2]"),
        ("  [3]  ", "[3]"),
    ],
)
def test_strip_code_fences(raw, expected):
    assert strip_code_fences(raw) == expected
