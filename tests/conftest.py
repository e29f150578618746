"""Shared fixtures: canned HTTP responses instead of the network."""

import pytest
import requests


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, text=""):
        self.status_code = status_code
        self._json = json_data
        self.text = text

    def json(self):
        if self._json is None:
            raise ValueError("No JSON object could be decoded")
        return self._json


class FakeHTTP:
    """Route ``requests.get`` by URL substring.

    A route maps to a response, an exception instance (raised), or a list
    of those consumed in order (the last one repeats).
    """

    def __init__(self):
        self.routes = []
        self.calls = []

    def add(self, url_part, response):
        self.routes.append((url_part, response))
        return self

    def __call__(self, url, params=None, headers=None, timeout=None, **kwargs):
        self.calls.append({"url": url, "params": params, "headers": headers or {}})
        for url_part, response in self.routes:
            if url_part in url:
                if isinstance(response, list):
                    response = response.pop(0) if len(response) > 1 else response[0]
                if isinstance(response, Exception):
                    raise response
                return response
        return FakeResponse(404, text="Resource not found.")


@pytest.fixture
def fake_http(monkeypatch):
    http = FakeHTTP()
    monkeypatch.setattr(requests, "get", http)
    return http


@pytest.fixture
def response():
    """Factory for canned responses."""
    return FakeResponse
