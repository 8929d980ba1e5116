import httpx
import pytest

from eowkit.config import ServiceEndpoint
from eowkit.content import ContentFetcher, locator_path
from eowkit.errors import ContentFetchFailed

ENDPOINT = ServiceEndpoint(host="127.0.0.1", port=8080, health_path="/")


def _fetcher(handler):
    return ContentFetcher(httpx.Client(transport=httpx.MockTransport(handler)), ENDPOINT)


def test_locator_path():
    assert locator_path("/content/wiki/A/Paris") == "/content/wiki/A/Paris"
    assert locator_path("Albert Einstein") == "/wiki/Albert%20Einstein"
    assert locator_path("AC/DC") == "/wiki/AC%2FDC"


def test_fetch_strips_markup():
    seen = []

    def handler(request):
        seen.append(str(request.url))
        return httpx.Response(
            200,
            text="<html><head><style>p{}</style></head><body><h1>Paris</h1>\n<p>Capital   of <b>France</b>.</p>"
            "<script>var x = 1;</script></body></html>",
        )

    text = _fetcher(handler).fetch("/content/wiki/A/Paris")
    assert text == "Paris Capital of France ."
    assert seen == ["http://127.0.0.1:8080/content/wiki/A/Paris"]


def test_fetch_http_error_raises_content_fetch_failed():
    with pytest.raises(ContentFetchFailed) as exc:
        _fetcher(lambda r: httpx.Response(404, text="nope")).fetch("/A/Missing")
    assert exc.value.locator == "/A/Missing"


def test_fetch_transport_error_raises_content_fetch_failed():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(ContentFetchFailed):
        _fetcher(handler).fetch("/A/Slow")
