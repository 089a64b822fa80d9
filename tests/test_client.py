"""Tests for client.py — the httpx client, against a mock transport."""

import json

import httpx
import pytest

from worklog.client import AUTH_HEADER, ClientError, WorklogClient, base_url, split_tags


def _client(handler, token=None) -> WorklogClient:
    return WorklogClient(":8080", token=token, transport=httpx.MockTransport(handler))


class TestHelpers:
    def test_base_url(self):
        assert base_url(":8080") == "http://localhost:8080"
        assert base_url("example.com:80") == "http://example.com:80"
        assert base_url("https://log.example.com/") == "https://log.example.com"

    def test_split_tags(self):
        assert split_tags(" a , b ,,c") == ["a", "b", "c"]
        assert split_tags("") is None
        assert split_tags(" , ") is None


class TestWorklogClient:
    def test_post_update_sends_token_and_body(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["token"] = request.headers.get(AUTH_HEADER)
            seen["body"] = json.loads(request.content)
            seen["agent"] = request.headers.get("User-Agent")
            return httpx.Response(201, json={"id": 1, "message": "hi", "timestamp": "t"})

        with _client(handler, token="s3cret") as client:
            entry = client.post_update("hi", tags=["a"])

        assert entry["id"] == 1
        assert seen["path"] == "/update"
        assert seen["token"] == "s3cret"
        assert seen["body"] == {"message": "hi", "tags": ["a"]}
        assert seen["agent"].startswith("worklog-client/")

    def test_tags_omitted_when_absent(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"id": 1})

        with _client(handler, token="s3cret") as client:
            client.post_update("hi")
        assert seen["body"] == {"message": "hi"}

    def test_error_status_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": "invalid token"})

        with _client(handler, token="bad") as client:
            with pytest.raises(ClientError) as exc_info:
                client.post_update("hi")
        assert exc_info.value.status == 401
        assert exc_info.value.detail == "invalid token"

    def test_error_with_plain_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="boom")

        with _client(handler) as client:
            with pytest.raises(ClientError, match="boom"):
                client.initial()

    def test_register(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/users"
            assert AUTH_HEADER not in request.headers
            return httpx.Response(201, json={"id": 1, "username": "ALICE", "token": "ab"})

        with _client(handler) as client:
            assert client.register("alice")["token"] == "ab"

    def test_initial_for_user(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/initial/ALICE"
            return httpx.Response(200, json=[])

        with _client(handler) as client:
            assert client.initial("ALICE") == []
