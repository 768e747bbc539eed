"""Mesh fetching over HTTP with a fake requests session."""

import asyncio
import hashlib
from types import SimpleNamespace

import requests

from worldbuilder.fetch import FetchError, FetchErrorKind, MeshFetcher


class FakeSession:
    """Answers ``get`` from a url -> (status, body) table, or raises."""

    def __init__(self, responses=None, error=None):
        self.responses = dict(responses or {})
        self.error = error
        self.urls = []

    def get(self, url, timeout=None):
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        status, body = self.responses.get(url, (404, b""))
        return SimpleNamespace(status_code=status, content=body)


def _fetch(fetcher, uri, sha256=None):
    return asyncio.run(fetcher.fetch(uri, sha256))


class TestMeshFetcher:
    def test_success(self):
        session = FakeSession({"http://host/meshes/a.stl": (200, b"abc")})
        fetcher = MeshFetcher("http://host/", session=session)
        assert _fetch(fetcher, "/meshes/a.stl") == b"abc"
        assert session.urls == ["http://host/meshes/a.stl"]

    def test_cache_hit_by_sha(self):
        body = b"solid mesh bytes"
        sha = hashlib.sha256(body).hexdigest()
        session = FakeSession({"http://host/a.stl": (200, body)})
        fetcher = MeshFetcher("http://host", session=session)
        assert _fetch(fetcher, "a.stl", sha) == body
        assert _fetch(fetcher, "other.stl", sha.upper()) == body
        assert fetcher.request_count == 1

    def test_sha_mismatch_still_returns_bytes(self):
        session = FakeSession({"http://host/a.stl": (200, b"xyz")})
        fetcher = MeshFetcher("http://host", session=session)
        assert _fetch(fetcher, "a.stl", "deadbeef") == b"xyz"
        # cached under the claimed hash as well as the real one
        assert fetcher.cached("deadbeef") == b"xyz"
        assert fetcher.cached(hashlib.sha256(b"xyz").hexdigest()) == b"xyz"

    def test_status_error(self):
        fetcher = MeshFetcher("http://host", session=FakeSession())
        result = _fetch(fetcher, "missing.stl")
        assert isinstance(result, FetchError)
        assert result.kind == FetchErrorKind.status
        assert result.status_code == 404

    def test_timeout(self):
        fetcher = MeshFetcher("http://host", session=FakeSession(error=requests.Timeout()))
        assert _fetch(fetcher, "a.stl").kind == FetchErrorKind.timeout

    def test_network_error(self):
        session = FakeSession(error=requests.ConnectionError("refused"))
        result = _fetch(MeshFetcher("http://host", session=session), "a.stl")
        assert result.kind == FetchErrorKind.network
        assert "refused" in str(result)

    def test_missing_uri(self):
        assert _fetch(MeshFetcher("http://host", session=FakeSession()), "").kind == \
            FetchErrorKind.config

    def test_no_base_url(self):
        session = FakeSession({"https://cdn/x.stl": (200, b"ok")})
        fetcher = MeshFetcher("", session=session)
        assert fetcher.url_for("x.stl") is None
        assert _fetch(fetcher, "x.stl").kind == FetchErrorKind.config
        assert _fetch(fetcher, "https://cdn/x.stl") == b"ok"
