"""Upstream gallery lookups over HTTP."""

from __future__ import annotations

import json

import httpx
import pytest

from ExtRegistry.Maintenance.errors import TransientIOError
from ExtRegistry.Maintenance.identity import PublicIds, UpstreamRegistryClient
from ExtRegistry.Maintenance.identity.upstream import parse_public_ids, query_payload

GALLERY = "https://gallery.example.test/_apis/public/gallery/"


def _client(handler, **kwargs):
    return UpstreamRegistryClient(
        GALLERY,
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        initial_wait_seconds=0,
        **kwargs,
    )


def test_lookup_posts_extension_query():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(
            200,
            json={
                "results": [
                    {
                        "extensions": [
                            {"extensionId": "ext-1", "publisher": {"publisherId": "pub-1"}}
                        ]
                    }
                ]
            },
        )

    ids = _client(handler).lookup("acme", "widget")

    assert ids == PublicIds(namespace="pub-1", extension="ext-1")
    request = requests[0]
    assert request.method == "POST"
    assert str(request.url) == "https://gallery.example.test/_apis/public/gallery/extensionquery"
    assert "api-version=3.0-preview.1" in request.headers["Accept"]
    assert json.loads(request.content) == query_payload("acme.widget")


def test_not_found_means_no_ids():
    assert _client(lambda request: httpx.Response(404)).lookup("acme", "widget") == PublicIds()


def test_no_gallery_configured():
    client = UpstreamRegistryClient(None)
    assert client.lookup("acme", "widget") == PublicIds()
    client.close()


def test_invalid_json_means_no_ids():
    response = lambda request: httpx.Response(200, content=b"<html>")
    assert _client(response).lookup("acme", "widget") == PublicIds()


def test_server_errors_are_retried_then_transient():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503)

    with pytest.raises(TransientIOError):
        _client(handler, io_attempts=3).lookup("acme", "widget")
    assert len(calls) == 3


def test_recovers_from_one_failure():
    responses = [httpx.Response(502), httpx.Response(200, json={"results": []})]
    client = _client(lambda request: responses.pop(0), io_attempts=2)
    assert client.lookup("acme", "widget") == PublicIds()


@pytest.mark.parametrize(
    "document",
    [{}, {"results": []}, {"results": [{"extensions": []}]}, {"results": [{"extensions": [{}]}]}],
)
def test_parse_public_ids_tolerates_partial_documents(document):
    assert parse_public_ids(document) == PublicIds()
