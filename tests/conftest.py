from datetime import datetime, timezone

import pytest
import requests

from mod_profile_dl.mods import ModLoader
from mod_profile_dl.sources import CandidateFile

_NETWORK_BLOCK_MSG = "Network access is blocked during tests. Mock the session or the source."


def _block_network(*_args, **_kwargs):
    raise RuntimeError(_NETWORK_BLOCK_MSG)


@pytest.fixture(autouse=True)
def _isolate_test_environment(tmp_path_factory, monkeypatch):
    """Point the config at a temp file and block real HTTP requests."""
    base = tmp_path_factory.mktemp("mod-profile-dl")
    monkeypatch.setenv("MOD_PROFILE_DL_CONFIG", str(base / "config.json"))
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    monkeypatch.delenv("CURSEFORGE_API_KEY", raising=False)
    monkeypatch.setattr(requests.Session, "request", _block_network)


class FakeResponse:
    """Minimal stand-in for a streamed requests.Response."""

    def __init__(self, body=b"", status_code=200, headers=None, chunks=None, fail_after=None):
        self.status_code = status_code
        self.headers = dict(headers) if headers is not None else {"content-length": str(len(body))}
        self._chunks = chunks if chunks is not None else [body[i : i + 4] for i in range(0, len(body), 4)]
        self._fail_after = fail_after
        self.url = "https://example.invalid/file"

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error for url: {self.url}")

    def iter_content(self, chunk_size=8192):
        for i, chunk in enumerate(self._chunks):
            if self._fail_after is not None and i >= self._fail_after:
                raise requests.ConnectionError("Connection reset by peer")
            yield chunk


class FakeSession:
    """Serves FakeResponse objects by URL."""

    def __init__(self, responses=None):
        self.headers = {}
        self.responses = dict(responses or {})
        self.requested = []

    def get(self, url, **kwargs):
        self.requested.append(url)
        response = self.responses[url]
        if isinstance(response, BaseException):
            raise response
        return response


@pytest.fixture
def make_candidate():
    """Factory for CandidateFile objects with sensible defaults."""

    def _make(
        label="mod.jar",
        versions=("1.20.1",),
        loaders=(ModLoader.FABRIC,),
        published=datetime(2024, 1, 1, tzinfo=timezone.utc),
        url=None,
        size=None,
        file_id=None,
    ):
        return CandidateFile(
            file_id=file_id or label,
            url=url or f"https://cdn.example.invalid/{label}",
            game_versions=frozenset(versions),
            loaders=frozenset(loaders),
            published=published,
            label=label,
            size=size,
        )

    return _make


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def fake_response():
    return FakeResponse
